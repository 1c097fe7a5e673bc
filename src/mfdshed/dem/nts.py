"""
National Topographic System (NTS) map sheet arithmetic.

CDED elevation tiles are distributed per NTS 1:50,000 map sheet, split into
east and west halves. The NTS grid south of 68°N is regular:

- 1:1,000,000 series: 4° latitude x 8° longitude, numbered by column
  (westward from 48°W) and row (northward from 40°N), e.g. 92 or 103.
- 1:250,000 letters A-P: 1° x 2°, sixteen per series.
- 1:50,000 sheets 1-16: 15' x 30', sixteen per letter.

Letters and sheets both run in a serpentine order starting in the south-east
corner: the first row goes east to west, the next west to east, and so on.
"""

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LETTERS = "ABCDEFGHIJKLMNOP"

# Extent of the regular part of the grid
MIN_LAT = 40.0
MAX_LAT = 68.0
EAST_LON = -48.0
MAX_COLUMNS = 12  # series columns 0-11 reach 144°W

HALF_SHEET_DEG = 0.25  # half sheets are 15' x 15'


@dataclass(frozen=True, order=True)
class NtsSheet:
    """One half of an NTS 1:50,000 map sheet."""

    series: int
    letter: str
    sheet: int
    half: str  # "e" or "w"

    @property
    def map_sheet(self) -> str:
        """1:50,000 sheet name, e.g. '092G06'."""
        return f"{self.series:03d}{self.letter}{self.sheet:02d}"

    @property
    def tile_name(self) -> str:
        """CDED file stem, e.g. '092g06_w'."""
        return f"{self.map_sheet.lower()}_{self.half}"

    @property
    def directory(self) -> str:
        """1:250,000 directory name, e.g. '92g'."""
        return f"{self.series}{self.letter.lower()}"


def _serpentine(row: int, col_from_east: int) -> int:
    """Index 0-15 within a 4 x 4 block numbered in NTS order."""
    if row % 2 == 0:
        return row * 4 + col_from_east
    return row * 4 + (3 - col_from_east)


def nts_mapsheet(lon: float, lat: float) -> NtsSheet:
    """
    Find the NTS 1:50,000 half sheet containing a geographic coordinate.

    Points on a sheet boundary belong to the sheet to their north and west.

    Args:
        lon: Longitude in decimal degrees (negative west)
        lat: Latitude in decimal degrees

    Returns:
        NtsSheet

    Raises:
        ValueError: If the point is outside the regular NTS grid

    Example:
        >>> nts_mapsheet(-123.1, 49.26).map_sheet
        '092G06'
    """
    if not (MIN_LAT <= lat < MAX_LAT):
        raise ValueError(f"Latitude {lat} is outside the supported NTS range [{MIN_LAT}, {MAX_LAT})")

    west = -lon + EAST_LON  # degrees west of 48°W
    if not (0 <= west < MAX_COLUMNS * 8):
        raise ValueError(f"Longitude {lon} is outside the supported NTS range")

    north = lat - MIN_LAT

    col = math.floor(west / 8)
    row = math.floor(north / 4)
    series = col * 10 + row

    # 1:250,000 letter
    west_in_series = west - col * 8
    north_in_series = north - row * 4
    letter_col = math.floor(west_in_series / 2)
    letter_row = math.floor(north_in_series)
    letter = LETTERS[_serpentine(letter_row, letter_col)]

    # 1:50,000 sheet
    west_in_letter = west_in_series - letter_col * 2
    north_in_letter = north_in_series - letter_row
    sheet_col = min(math.floor(west_in_letter * 2), 3)
    sheet_row = min(math.floor(north_in_letter * 4), 3)
    sheet = _serpentine(sheet_row, sheet_col) + 1

    west_in_sheet = west_in_letter - sheet_col * 0.5
    half = "e" if west_in_sheet < HALF_SHEET_DEG else "w"

    return NtsSheet(series=series, letter=letter, sheet=sheet, half=half)


def tiles_for_bbox(
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
) -> list[NtsSheet]:
    """
    List every NTS half sheet intersecting a geographic bounding box.

    Returns:
        Unique sheets in sorted order

    Raises:
        ValueError: If the box is inverted or leaves the supported grid
    """
    if min_lon > max_lon or min_lat > max_lat:
        raise ValueError(f"Invalid bounding box: ({min_lon}, {min_lat}, {max_lon}, {max_lat})")

    # Walk the 15' x 15' half-sheet lattice and sample each cell centre
    i_start = math.floor(min_lat / HALF_SHEET_DEG)
    i_stop = max(math.ceil(max_lat / HALF_SHEET_DEG), i_start + 1)
    j_start = math.floor(min_lon / HALF_SHEET_DEG)
    j_stop = max(math.ceil(max_lon / HALF_SHEET_DEG), j_start + 1)

    tiles: set[NtsSheet] = set()
    for i in range(i_start, i_stop):
        for j in range(j_start, j_stop):
            lat = (i + 0.5) * HALF_SHEET_DEG
            lon = (j + 0.5) * HALF_SHEET_DEG
            tiles.add(nts_mapsheet(lon, lat))

    logger.debug(f"{len(tiles)} NTS half sheet(s) intersect ({min_lon}, {min_lat}, {max_lon}, {max_lat})")
    return sorted(tiles)
