from anomady import storage


def test_get_theme_english():
    theme = storage.get_theme("grim_warden")
    assert theme.name == "Grim Warden"
    assert theme.base_lore == "The Warden keeps the last lantern lit at the edge of the Ashen March."


def test_get_theme_localized():
    theme = storage.get_theme("grim_warden", "cs")
    assert theme.base_lore != storage.get_theme("grim_warden").base_lore
    assert theme.base_lore


def test_missing_language_falls_back_to_english():
    theme = storage.get_theme("salt_reavers", "cs")
    assert theme.base_lore == "Brine-crusted raiders sail the drowned cities."


def test_unknown_theme():
    assert storage.get_theme("nope") is None


def test_path_traversal_rejected():
    assert storage.get_theme("../secrets") is None
    assert storage.get_theme("") is None


def test_list_theme_ids():
    assert storage.list_theme_ids() == ["grim_warden", "salt_reavers"]
