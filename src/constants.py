from __future__ import annotations

DEFAULT_CONTEXT_FILENAME = "AGENT.md"
DEFAULT_CONFIG_DIR_NAME = ".toolsmith"
DEFAULT_TOOL_IGNORE_FILENAME = ".toolsmithignore"
GIT_IGNORE_FILENAME = ".gitignore"
VCS_ROOT_MARKER = ".git"

# Rough token estimate: ~4 characters per token, no tokenizer dependency
CHARS_PER_TOKEN = 4

# Exclusions applied by multi-file reads unless the caller opts out
DEFAULT_EXCLUDES: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/.vscode/**",
    "**/.idea/**",
    "**/dist/**",
    "**/build/**",
    "**/coverage/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/*.pyo",
    "**/*.bin",
    "**/*.exe",
    "**/*.dll",
    "**/*.so",
    "**/*.dylib",
    "**/*.class",
    "**/*.jar",
    "**/*.war",
    "**/*.zip",
    "**/*.tar",
    "**/*.gz",
    "**/*.bz2",
    "**/*.rar",
    "**/*.7z",
    "**/*.doc",
    "**/*.docx",
    "**/*.xls",
    "**/*.xlsx",
    "**/*.ppt",
    "**/*.pptx",
    "**/*.odt",
    "**/*.ods",
    "**/*.odp",
    "**/*.DS_Store",
    "**/.env",
)

# Directories the downward context scan never enters
CONTEXT_SCAN_SKIP_DIRS: tuple[str, ...] = (".git", "node_modules", "__pycache__", ".venv")
