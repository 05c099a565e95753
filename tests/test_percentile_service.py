"""Tests for percentile, rank and vibe tag derivation."""

import numpy as np
import pytest

from face_score.config import Settings
from face_score.services.percentile_service import MAX_VIBE_TAGS, PercentileService


@pytest.fixture
def service():
    return PercentileService(Settings())


def test_normal_percentile_centre_is_fifty(service):
    assert service.percentile(50.0) == pytest.approx(50.0)


def test_normal_percentile_one_std_above(service):
    assert service.percentile(65.0) == pytest.approx(84.13, abs=0.01)


def test_percentile_is_monotonic_and_clamped(service):
    values = [service.percentile(s) for s in np.linspace(0, 100, 101)]
    assert values == sorted(values)
    assert min(values) == 1.0
    assert max(values) == 99.0


def test_linear_percentile_follows_score():
    service = PercentileService(Settings(percentile_distribution="linear"))
    assert service.percentile(42.5) == 42.5
    assert service.percentile(0.0) == 1.0
    assert service.percentile(100.0) == 99.0


def test_unknown_distribution_rejected():
    with pytest.raises(ValueError):
        PercentileService(Settings(percentile_distribution="cauchy"))


def test_rank_against_reference_population(service):
    assert service.rank(99.0) == 100
    assert service.rank(50.0) == 5000
    assert service.rank(100.0) == 1


@pytest.mark.parametrize(
    "score, expected",
    [
        (85.0, ("stunning", "attractive")),
        (70.0, ("good-looking", "pleasant")),
        (45.0, ("average", "normal")),
        (40.0, ()),
        (10.0, ()),
    ],
)
def test_vibe_tags_by_score_band(score, expected):
    assert PercentileService.vibe_tags(score, np.zeros(8)) == expected


def test_vibe_tags_from_embedding_mean():
    assert PercentileService.vibe_tags(85.0, np.full(8, 0.2)) == ("stunning", "attractive", "distinctive")
    assert PercentileService.vibe_tags(10.0, np.full(8, -0.2)) == ("unique",)


def test_vibe_tags_are_bounded():
    tags = PercentileService.vibe_tags(99.0, np.full(8, 0.5))
    assert len(tags) <= MAX_VIBE_TAGS


def test_derive_bundles_everything(service):
    derived = service.derive(65.0, np.zeros(8))
    assert derived.percentile == pytest.approx(84.13, abs=0.01)
    assert derived.population == 10000
    assert derived.rank == service.rank(derived.percentile)
    assert derived.vibe_tags == ("good-looking", "pleasant")
