# ============================================
# FILE SYSTEM TOOLS
# ============================================
from pathlib import Path
from typing import Any

from conductor.infrastructure.tools.base import Tool


class WorkspaceTool(Tool):
    """Tool confined to a workspace root directory."""

    def __init__(self, root: str | Path = "."):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise PermissionError(f"Path escapes the workspace: {path}")
        return resolved


class ReadFileTool(WorkspaceTool):
    """Safe file reading with size limits"""

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a text file inside the workspace"

    async def execute(self, path: str, encoding: str = "utf-8", max_size_mb: int = 10, **kwargs) -> dict[str, Any]:
        try:
            file_path = self._resolve(path)
            if not file_path.is_file():
                return {"success": False, "error": f"File not found: {path}"}

            file_size_mb = file_path.stat().st_size / (1024 * 1024)
            if file_size_mb > max_size_mb:
                return {"success": False, "error": f"File too large: {file_size_mb:.2f}MB > {max_size_mb}MB"}

            content = file_path.read_text(encoding=encoding)
            return {"success": True, "content": content, "size": len(content), "path": str(file_path)}
        except Exception as e:
            return {"success": False, "error": str(e)}


class WriteFileTool(WorkspaceTool):
    """Writes a file, keeping a .bak copy of what it replaces"""

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file inside the workspace (creates parent directories)"

    @property
    def requires_approval(self) -> bool:
        return True

    async def execute(self, path: str, content: str, backup: bool = True, **kwargs) -> dict[str, Any]:
        try:
            file_path = self._resolve(path)
            backed_up = False
            if backup and file_path.exists():
                backup_path = file_path.with_suffix(file_path.suffix + ".bak")
                backup_path.write_text(file_path.read_text(encoding="utf-8"), encoding="utf-8")
                backed_up = True

            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
            return {"success": True, "path": str(file_path), "size": len(content), "backed_up": backed_up}
        except Exception as e:
            return {"success": False, "error": str(e)}


class ReplaceTool(WorkspaceTool):
    """Exact-text replacement inside one file"""

    @property
    def name(self) -> str:
        return "replace"

    @property
    def description(self) -> str:
        return "Replace an exact text fragment in a workspace file; old_text must occur exactly once"

    @property
    def requires_approval(self) -> bool:
        return True

    async def execute(self, path: str, old_text: str, new_text: str, **kwargs) -> dict[str, Any]:
        try:
            file_path = self._resolve(path)
            if not file_path.is_file():
                return {"success": False, "error": f"File not found: {path}"}

            original = file_path.read_text(encoding="utf-8")
            occurrences = original.count(old_text)
            if occurrences != 1:
                return {
                    "success": False,
                    "error": f"Expected exactly one occurrence of old_text, found {occurrences}",
                }
            file_path.write_text(original.replace(old_text, new_text, 1), encoding="utf-8")
            return {"success": True, "path": str(file_path)}
        except Exception as e:
            return {"success": False, "error": str(e)}
