import pytest

from flowpilot.orchestration.placeholders import camel_to_snake, is_placeholder_identifier, normalize_keys


@pytest.mark.parametrize(
    "value",
    [
        "12345",
        "draft_id",
        "[Insert ID]",
        "<DRAFT_ID>",
        "{draft_id}",
        "your_draft_id",
        "actual_id",
        "draft_123",
        "id",
        "placeholder-value",
        "EXAMPLE_ID_VALUE",
        "",
        None,
    ],
)
def test_placeholder_identifiers_are_detected(value) -> None:
    assert is_placeholder_identifier(value) is True


@pytest.mark.parametrize(
    "value",
    [
        "a1b2c3d4-thread.json",
        "k9Xv2LmQ8rTz4WpN6bYc1HdF",
        "thread_2024-05-01_8f3a.json",
    ],
)
def test_real_identifiers_are_not_placeholders(value: str) -> None:
    assert is_placeholder_identifier(value) is False


def test_camel_to_snake() -> None:
    assert camel_to_snake("draftId") == "draft_id"
    assert camel_to_snake("maxResultsCount") == "max_results_count"
    assert camel_to_snake("query") == "query"


def test_normalize_keys_only_accepts_converted_keys_known_to_schema() -> None:
    args = {"draftId": "abc", "userName": "ada", "query": "q"}
    normalized = normalize_keys(args, ["draft_id", "query"])

    assert normalized == {"draft_id": "abc", "userName": "ada", "query": "q"}


def test_normalize_keys_does_not_clobber_existing_snake_key() -> None:
    args = {"draft_id": "keep", "draftId": "other"}
    assert normalize_keys(args, ["draft_id"]) == {"draft_id": "keep", "draftId": "other"}


def test_normalize_keys_without_schema_is_identity() -> None:
    assert normalize_keys({"maxResults": 3}, []) == {"maxResults": 3}
