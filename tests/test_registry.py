import pytest

from sluice.config.schema import StageSpec
from sluice.pipeline.registry import available_stages, build_stage, parse_stage_spec, resolve_stages
from sluice.stages.codec import GzipStage
from sluice.stages.records import JsonLinesStage
from sluice.stages.text import PrefixStage


def test_parse_plain_name():
    assert parse_stage_spec("upper") == StageSpec(name="upper", params={})


def test_parse_params_keeps_equals_in_values():
    spec = parse_stage_spec("prefix:text=a=b,skip_blank=false")

    assert spec.name == "prefix"
    assert spec.params == {"text": "a=b", "skip_blank": "false"}


@pytest.mark.parametrize("text", [":x=1", "prefix:novalue"])
def test_parse_rejects_malformed_specs(text):
    with pytest.raises(ValueError):
        parse_stage_spec(text)


def test_build_coerces_parameter_types():
    stage = build_stage(StageSpec(name="jsonl", params={"skip_invalid": "yes"}))

    assert isinstance(stage, JsonLinesStage)
    assert stage.skip_invalid is True


def test_build_unknown_stage_lists_known_names():
    with pytest.raises(ValueError, match="available: .*gzip"):
        build_stage(StageSpec(name="explode"))


def test_build_rejects_unknown_and_invalid_params():
    with pytest.raises(ValueError, match="Unknown parameter"):
        build_stage(StageSpec(name="gzip", params={"speed": "1"}))
    with pytest.raises(ValueError, match="gzip.level"):
        build_stage(StageSpec(name="gzip", params={"level": "high"}))


def test_resolve_mixes_strings_and_specs_and_builds_fresh_instances():
    specs = ["gzip:level=9", StageSpec(name="prefix", params={"text": "> "})]

    first = resolve_stages(specs)
    second = resolve_stages(specs)

    assert isinstance(first[0], GzipStage)
    assert isinstance(first[1], PrefixStage) and first[1].text == "> "
    assert first[0] is not second[0]


def test_available_stages_are_sorted_and_documented():
    names = [entry.name for entry in available_stages()]

    assert names == sorted(names)
    assert {"identity", "upper", "lines", "gzip", "gunzip", "word-count"} <= set(names)
    assert all(entry.summary for entry in available_stages())
