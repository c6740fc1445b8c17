"""集成测试共享 fixture -- 模拟同一仓库的两个克隆"""

import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

from taskfabric.core.config import FabricConfig
from taskfabric.core.service import TaskService
from taskfabric.core.store import create_store_group, init_root


def make_service(root: Path, author: str, branch: str) -> TaskService:
    config = FabricConfig(root=root, author=author, branch=branch)
    return TaskService(create_store_group(root), config)


@pytest.fixture
def upstream(tmp_path: Path) -> Path:
    """共同祖先的 .fabric 目录"""
    root = tmp_path / "upstream" / ".fabric"
    init_root(root)
    return root


@pytest.fixture
def clone(tmp_path: Path) -> Callable[[Path, str], Path]:
    """复制一份 .fabric（不含缓存），相当于 git clone / 切出分支"""

    def _clone(source: Path, name: str) -> Path:
        target = tmp_path / name / ".fabric"
        shutil.copytree(source, target, ignore=shutil.ignore_patterns(".state.json", ".index.json"))
        return target

    return _clone


@pytest.fixture
def union_merge() -> Callable[[Path, Path, Path], None]:
    """按文件名合并两个 .fabric 的 JSONL 日志：ours 的行在前，theirs 独有的行追加在后

    等价于 .gitattributes 中 merge=union 的效果。
    """

    def _merge(ours: Path, theirs: Path, into: Path) -> None:
        for sub in ("events", "archive"):
            names = {p.name for p in (ours / sub).glob("*.jsonl")}
            names |= {p.name for p in (theirs / sub).glob("*.jsonl")}
            for name in sorted(names):
                lines: list[str] = []
                for side in (ours, theirs):
                    path = side / sub / name
                    if path.exists():
                        for line in path.read_text(encoding="utf-8").splitlines():
                            if line not in lines:
                                lines.append(line)
                target = into / sub / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text("".join(line + "\n" for line in lines), encoding="utf-8")

    return _merge


@pytest.fixture
def service_for() -> Callable[[Path, str, str], TaskService]:
    return make_service
