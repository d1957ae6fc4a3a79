import pytest

from nmanager.silence import SilenceStage
from nmanager.stage import MultiStage
from nmanager.types import Alert


class LabelSilence:
    def __init__(self, **labels):
        self.labels = labels

    def matches(self, labels):
        return all(labels.get(k) == v for k, v in self.labels.items())


class BrokenSilence:
    def matches(self, labels):
        raise ValueError("bad matcher")


def alerts(*names):
    return [Alert(labels={"alertname": n}) for n in names]


def test_none_data_passes_through():
    stage = SilenceStage(lambda ctx: [LabelSilence(alertname="a")])
    assert stage.execute({}, None) == ({}, None)


def test_no_silences_returns_input():
    data = alerts("a", "b")
    ctx, out = SilenceStage(lambda ctx: []).execute({"seq": "s"}, data)
    assert out is data
    assert ctx == {"seq": "s"}


def test_matching_alerts_are_removed():
    stage = SilenceStage(lambda ctx: [LabelSilence(alertname="a")])
    _, out = stage.execute({}, alerts("a", "b", "a", "c"))
    assert [x.labels["alertname"] for x in out] == ["b", "c"]


def test_all_muted_gives_none():
    stage = SilenceStage(lambda ctx: [LabelSilence(alertname="a"), LabelSilence(alertname="b")])
    _, out = stage.execute({}, alerts("a", "b"))
    assert out is None


def test_all_muted_stops_pipeline():
    seen = []

    class Record(SilenceStage):
        def execute(self, context, data):
            seen.append(data)
            return context, data

    pipeline = MultiStage([SilenceStage(lambda ctx: [LabelSilence(alertname="a")]), Record(lambda c: [])])
    _, out = pipeline.execute({}, alerts("a"))
    assert out is None
    assert seen == []


def test_source_receives_context():
    contexts = []

    def source(ctx):
        contexts.append(ctx)
        return []

    ctx = {"seq": "42"}
    SilenceStage(source).execute(ctx, alerts("a"))
    assert contexts == [ctx]


def test_source_error_propagates():
    def source(ctx):
        raise RuntimeError("unavailable")

    with pytest.raises(RuntimeError, match="unavailable"):
        SilenceStage(source).execute({}, alerts("a"))


def test_matcher_error_propagates():
    with pytest.raises(ValueError, match="bad matcher"):
        SilenceStage(lambda ctx: [BrokenSilence()]).execute({}, alerts("a"))