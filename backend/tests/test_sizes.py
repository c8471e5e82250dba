import pytest

from sizes import LANDSCAPE, PORTRAIT, SQUARE, derive_generation_size, max_side_for


@pytest.mark.parametrize("width,height,expected,orientation", [
    (3000, 3000, (2048, 2048), SQUARE),
    (4000, 2000, (2048, 1024), LANDSCAPE),
    (3600, 4800, (1536, 2048), PORTRAIT),
    (10000, 100, (2048, 512), LANDSCAPE),
    (1000, 800, (1000, 800), LANDSCAPE),
    (300, 300, (512, 512), SQUARE),
])
def test_generation_size(width, height, expected, orientation):
    size = derive_generation_size(width, height)

    assert (size.width, size.height) == expected
    assert size.orientation == orientation
    assert size.label == f"{expected[0]}x{expected[1]}"


def test_backend_cap_lowers_max_side():
    max_side = max_side_for(1440)
    size = derive_generation_size(4000, 2000, max_side=max_side)

    assert max_side == 1440
    assert (size.width, size.height) == (1440, 720)
    assert max_side_for(None) == 2048
    assert max_side_for(4096) == 2048


@pytest.mark.parametrize("width,height", [(0, 100), (100, -5)])
def test_non_positive_print_area_rejected(width, height):
    with pytest.raises(ValueError):
        derive_generation_size(width, height)
