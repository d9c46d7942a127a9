#!/usr/bin/env python3

import pytest

from story_pipeline.artifact import CharacterAsset, EnvironmentAsset, find_matching, names_match


def _env(name, name_english=None):
    return EnvironmentAsset(name=name, description=f"{name} description", name_english=name_english)


PAIRS = [
    # unlocalized, same text
    (_env("Kitchen"), _env("Kitchen"), True),
    # case varied
    (_env("Kitchen"), _env("KITCHEN"), True),
    (_env("old kitchen"), _env("Old Kitchen "), True),
    # localized against unlocalized
    (_env("Cucina", "Kitchen"), _env("kitchen"), True),
    # both localized, different languages
    (_env("Cucina", "Kitchen"), _env("Cuisine", "KITCHEN"), True),
    # different places
    (_env("Kitchen"), _env("Garden"), False),
    (_env("Cucina", "Kitchen"), _env("Giardino", "Garden"), False),
]


@pytest.mark.parametrize("left, right, expected", PAIRS)
def test_matching_is_symmetric(left, right, expected):
    assert left.matches(right.display_name) is expected
    assert right.matches(left.display_name) is expected
    assert names_match(left.display_name, right.display_name) is expected
    assert names_match(right.display_name, left.display_name) is expected


@pytest.mark.parametrize("left, right", [
    ("Grandma", "grandma"),
    ("  Nonna", "NONNA  "),
    ("Straße", "STRASSE"),
])
def test_names_match_ignores_case_and_padding(left, right):
    assert names_match(left, right)
    assert names_match(right, left)


@pytest.mark.parametrize("blank", [None, "", "   "])
def test_blank_names_never_match(blank):
    assert not names_match(blank, blank)
    assert not names_match("Kitchen", blank)
    assert not names_match(blank, "Kitchen")
    assert not _env("Kitchen").matches(blank)


def test_matches_any_of_the_three_names():
    nonna = CharacterAsset(name="Nonna", description="Anziana", name_english="Grandma")

    assert nonna.display_name == "Grandma"
    assert nonna.matches("nonna")
    assert nonna.matches("GRANDMA")
    assert not nonna.matches("Grandpa")
    assert find_matching([_env("Garden"), nonna], "grandma") is nonna
    assert find_matching([nonna], "Grandpa") is None


def test_blank_english_name_falls_back_to_name():
    asset = _env("Cucina", "   ")

    assert asset.display_name == "Cucina"
    assert asset.matches("cucina")
