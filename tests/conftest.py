# Tệp: tests/conftest.py
# Fixture dùng chung cho test ChordLab.

import pytest

from chordlab.core.music_theory import Key, ScaleMode


@pytest.fixture
def c_major():
    return Key(0, ScaleMode.IONIAN)


@pytest.fixture
def c_minor():
    return Key(0, ScaleMode.AEOLIAN)
