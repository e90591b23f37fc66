from __future__ import annotations

from src.utils.legal_description import parse_legal_description, split_lines


def test_subdivision_block_city_block_and_lot() -> None:
    parsed = parse_legal_description("ST AUGUSTINE HIGHLANDS\nBLK N/6757\nLT 8")

    assert parsed.to_dict() == {
        "subdivision": "ST AUGUSTINE HIGHLANDS",
        "block": "N",
        "city_block": "6757",
        "lot1": "8",
        "lot2": None,
    }
    assert parsed.has_lot_and_block is True


def test_two_lots_and_spelled_out_block() -> None:
    parsed = parse_legal_description("WOODLAND PARK\nBLOCK 3\nLTS 4 & 5")

    assert parsed.subdivision == "WOODLAND PARK"
    assert parsed.block == "3"
    assert parsed.city_block is None
    assert parsed.lot1 == "4"
    assert parsed.lot2 == "5"


def test_first_line_is_block_line_has_no_subdivision() -> None:
    parsed = parse_legal_description("BLK 5 LOT 2")

    assert parsed.subdivision is None
    assert parsed.block == "5"
    assert parsed.lot1 == "2"


def test_lowercase_input_is_matched() -> None:
    parsed = parse_legal_description("Smith Addn\nblk 2\nlot 14")

    assert parsed.subdivision == "Smith Addn"
    assert parsed.block == "2"
    assert parsed.lot1 == "14"


def test_only_first_match_is_used() -> None:
    parsed = parse_legal_description("OAK CLIFF\nBLK 7\nLT 8\nLT 9\nBLK 10")

    assert parsed.block == "7"
    assert parsed.lot1 == "8"
    assert parsed.lot2 is None


def test_blank_lines_and_padding_are_ignored() -> None:
    parsed = parse_legal_description("\n   ST AUGUSTINE HIGHLANDS   \n\n  BLK N/6757 \n LT 8\n")

    assert parsed.subdivision == "ST AUGUSTINE HIGHLANDS"
    assert parsed.block == "N"
    assert parsed.lot1 == "8"


def test_irregular_description_yields_partial_result() -> None:
    parsed = parse_legal_description("ABS 1234 PG 56\nACRES 12.5 TRACT 7")

    assert parsed.subdivision == "ABS 1234 PG 56"
    assert parsed.block is None
    assert parsed.lot1 is None
    assert parsed.has_lot_and_block is False


def test_block_without_lot_is_not_enough() -> None:
    parsed = parse_legal_description("LAKEWOOD HEIGHTS\nBLK 12")

    assert parsed.block == "12"
    assert parsed.lot1 is None
    assert parsed.has_lot_and_block is False


def test_empty_input() -> None:
    for raw in (None, "", "   \n  "):
        parsed = parse_legal_description(raw)
        assert parsed.subdivision is None
        assert parsed.block is None
        assert parsed.lot1 is None
        assert parsed.has_lot_and_block is False


def test_split_lines() -> None:
    assert split_lines(" a \n\n b\n") == ["a", "b"]


def test_keywords_must_start_a_word() -> None:
    parsed = parse_legal_description("TRACT 8BLK 2\nSUBLOT 5 LT 6")

    assert parsed.block is None
    assert parsed.city_block is None
    assert parsed.lot1 == "6"
    assert parsed.has_lot_and_block is False
