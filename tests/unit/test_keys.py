"""Key spelling tests: env-name parsing, remote key flattening, and lookups.

The normalizer must answer ``api.url``, ``API_URL`` and ``apiurl`` identically
whichever spelling the merged tree happens to store.
"""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from app_scoped_config.domain.keys import KeyNormalizer, canonical_tree, env_name_to_path, flatten_key, iter_leaves

SEGMENT = st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=6)
SEGMENTS = st.lists(SEGMENT, min_size=1, max_size=4)
SCALAR = st.one_of(st.booleans(), st.integers(), st.text(min_size=1, max_size=5))


def test_flatten_key_drops_separators_and_case() -> None:
    assert flatten_key("API_URL") == "apiurl"
    assert flatten_key("api.url") == "apiurl"
    assert flatten_key("Feature.Dark_Mode") == "featuredarkmode"


def test_env_name_to_path_strips_prefix() -> None:
    assert env_name_to_path("APP_ADMIN_API_URL", "APP_ADMIN_") == ["apiurl"]


def test_env_name_to_path_nests_on_double_underscore() -> None:
    assert env_name_to_path("DB__HOST_NAME") == ["db", "hostname"]


def test_env_name_to_path_collapses_runs_and_trims_edges() -> None:
    assert env_name_to_path("A___B") == ["a", "b"]
    assert env_name_to_path("__LEADING___TRIPLE__") == ["leading", "triple"]


def test_env_name_to_path_of_separators_only_is_empty() -> None:
    assert env_name_to_path("____") == []


def test_canonical_tree_rewrites_remote_keys() -> None:
    tree = canonical_tree({"api.url": "x", "Feature": {"dark_mode": True}})
    assert tree == {"apiurl": "x", "feature": {"darkmode": True}}


def test_canonical_tree_merges_colliding_branches() -> None:
    tree = canonical_tree({"Db": {"host": "h"}, "db": {"port": 1}})
    assert tree == {"db": {"host": "h", "port": 1}}


def test_canonical_tree_does_not_mutate_input() -> None:
    source = {"api.url": "x", "nested": {"a_b": 1}}
    canonical_tree(source)
    assert source == {"api.url": "x", "nested": {"a_b": 1}}


def test_iter_leaves_yields_paths() -> None:
    leaves = dict(iter_leaves({"db": {"host": "h", "port": 1}, "flag": True}))
    assert leaves == {("db", "host"): "h", ("db", "port"): 1, ("flag",): True}


def test_normalizer_resolves_every_spelling_of_flat_key() -> None:
    normalizer = KeyNormalizer({"apiurl": "https://remote"})
    for spelling in ("apiurl", "api.url", "API_URL", "Api_Url", "apiUrl"):
        assert normalizer.resolve(spelling) == "https://remote"


def test_normalizer_resolves_nested_keys() -> None:
    normalizer = KeyNormalizer({"db": {"host": "localhost", "port": 5432}})
    assert normalizer.resolve("db.host") == "localhost"
    assert normalizer.resolve("DB_PORT") == 5432
    assert normalizer.resolve("db.Port") == 5432


def test_normalizer_reports_strategy_names_in_order() -> None:
    normalizer = KeyNormalizer({})
    assert normalizer.strategies() == ("exact", "flattened", "dotted", "nested")


def test_normalizer_match_names_winning_strategy() -> None:
    normalizer = KeyNormalizer({"api.url": "dotted", "apiurl": "flat"})
    assert normalizer.match("apiurl") == ("exact", "flat")
    assert normalizer.match("api.url") == ("exact", "dotted")
    assert normalizer.match("missing") is None


def test_normalizer_flattened_strategy_catches_env_spelling() -> None:
    normalizer = KeyNormalizer({"apiurl": "x"})
    assert normalizer.match("API_URL") == ("flattened", "x")


def test_normalizer_ignores_subtrees() -> None:
    normalizer = KeyNormalizer({"db": {"host": "h"}})
    assert normalizer.resolve("db") is None
    assert normalizer.resolve("db", default="fallback") == "fallback"


def test_normalizer_misses_return_default() -> None:
    normalizer = KeyNormalizer({"apiurl": "x"})
    assert normalizer.resolve("missing") is None
    assert normalizer.resolve("missing", default=3) == 3
    assert normalizer.resolve("") is None


def test_normalizer_answers_reconciled_nested_leaf_under_every_spelling() -> None:
    normalizer = KeyNormalizer({"api": {"url": "remote-value"}})
    for key in ("api.url", "API_URL", "apiurl"):
        assert normalizer.resolve(key) == "remote-value"


def test_normalizer_does_not_mutate_mapping() -> None:
    mapping = {"apiurl": "x", "db": {"host": "h"}}
    normalizer = KeyNormalizer(mapping)
    normalizer.resolve("api.url")
    normalizer.resolve("db.host")
    assert mapping == {"apiurl": "x", "db": {"host": "h"}}


@given(SEGMENTS, SCALAR)
def test_spellings_are_equivalent_for_flat_storage(segments, value) -> None:
    """Whatever the separators, every spelling of one key finds the same value."""

    normalizer = KeyNormalizer({"".join(segments): value})
    expected = normalizer.resolve("".join(segments))
    assert expected == value
    assert normalizer.resolve(".".join(segments)) == expected
    assert normalizer.resolve("_".join(segments).upper()) == expected


@given(SEGMENTS, SCALAR)
def test_env_spelling_round_trips_through_env_name_to_path(segments, value) -> None:
    """A key read from ``APP_<KEY>`` resolves under its dotted spelling."""

    name = "APP_" + "_".join(segment.upper() for segment in segments)
    path = env_name_to_path(name, "APP_")
    normalizer = KeyNormalizer({path[0]: value})
    assert normalizer.resolve(".".join(segments)) == value
