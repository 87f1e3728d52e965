from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from .fakes import A, B, C, LIB1, LIB2, Layout

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def layout(tmp_path: Path) -> Layout:
    """Empty class files A, B, util/C and jars lib1.jar, sub/lib2.jar."""
    ret = Layout(tmp_path)
    ret.touch_units(A, B, C)
    ret.touch_archives(LIB1, LIB2)
    ret.cache_root.mkdir()
    return ret
