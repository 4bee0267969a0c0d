"""
Tests for the consistency profile.

Tests for panelforge/consistency/profile.py
"""

import dataclasses

import pytest

from panelforge.consistency.profile import (
    ConsistencyProfile,
    EnvironmentProfile,
    IdentityDescriptor,
    build_consistency_profile,
    derive_environment,
    fingerprint_identity,
    placeholder_descriptor,
)
from panelforge.core.constants import Audience
from panelforge.core.exceptions import InputValidationError


class TestIdentityDescriptor:
    """Tests for IdentityDescriptor."""

    def test_render_includes_all_parts(self):
        descriptor = IdentityDescriptor(
            summary="A tall knight",
            features=("scar over left eye",),
            palette=("silver", "blue"),
            distinctive_marks=("dragon crest",),
        )
        text = descriptor.render()

        assert text.startswith("A tall knight")
        assert "scar over left eye" in text
        assert "silver, blue" in text
        assert "dragon crest" in text

    def test_from_text_normalizes_whitespace(self):
        descriptor = IdentityDescriptor.from_text("  a   small\nrobot ")

        assert descriptor.summary == "a small robot"

    def test_placeholder_names_reference(self):
        descriptor = placeholder_descriptor("ref-42")

        assert descriptor.is_placeholder
        assert "ref-42" in descriptor.render()

    def test_round_trip_dict(self):
        descriptor = IdentityDescriptor(summary="A fox", features=("bushy tail",))

        assert IdentityDescriptor.from_dict(descriptor.to_dict()) == descriptor


class TestConsistencyProfile:
    """Tests for ConsistencyProfile invariants."""

    def test_profile_is_frozen(self, sample_profile):
        with pytest.raises(dataclasses.FrozenInstanceError):
            sample_profile.reference_asset_id = "other"

    def test_fingerprint_deterministic(self, sample_profile):
        assert sample_profile.fingerprint == fingerprint_identity(sample_profile.identity)
        assert len(sample_profile.fingerprint) == 12

    def test_empty_identity_without_reference_rejected(self):
        with pytest.raises(ValueError):
            ConsistencyProfile(
                identity=IdentityDescriptor(summary=""),
                environment=EnvironmentProfile(location_name="park"),
            )


class TestDeriveEnvironment:
    """Tests for derive_environment."""

    def test_location_and_features_from_beats(self, make_beat):
        beats = [
            make_beat(0, environment="lighthouse tower"),
            make_beat(1, environment="rocky beach"),
            make_beat(2, environment="lighthouse tower"),
            make_beat(3, environment="stormy harbor"),
        ]

        env = derive_environment(beats, Audience.CHILDREN)

        assert env.location_name == "lighthouse tower"
        assert env.key_features[:2] == ("rocky beach", "stormy harbor")
        assert len(env.key_features) <= 5
        assert env.lighting_mood == "bright and cheerful"

    def test_time_of_day_from_keywords(self, make_beat):
        beats = [make_beat(0, summary="The moon rises over the hills")]

        assert derive_environment(beats, Audience.ADULTS).time_of_day == "night"

    def test_palette_capped_and_ordered(self, make_beat):
        env = derive_environment([make_beat(0)], Audience.YOUNG_ADULTS)

        assert env.color_palette == ("deep blue", "forest green", "sunset orange", "cool gray")

    def test_no_beats_uses_default_location(self):
        assert derive_environment([], Audience.CHILDREN).location_name == "story setting"


class TestBuildConsistencyProfile:
    """Tests for build_consistency_profile."""

    def test_placeholder_when_only_reference(self, make_beat):
        profile = build_consistency_profile([make_beat(0)], Audience.CHILDREN, reference_asset_id="ref-9")

        assert profile.identity.is_placeholder
        assert profile.has_reference
        assert profile.identity_text

    def test_descriptor_used_when_given(self, make_beat):
        descriptor = IdentityDescriptor(summary="A brave mouse")
        profile = build_consistency_profile([make_beat(0)], Audience.CHILDREN, descriptor=descriptor)

        assert profile.identity == descriptor
        assert profile.reference_asset_id is None

    def test_neither_source_rejected(self, make_beat):
        with pytest.raises(InputValidationError):
            build_consistency_profile([make_beat(0)], Audience.CHILDREN)

    def test_recurring_objects_kept(self, make_beat):
        profile = build_consistency_profile(
            [make_beat(0)], Audience.CHILDREN,
            descriptor=IdentityDescriptor(summary="A brave mouse"),
            recurring_objects=["red kite", "map"],
        )

        assert profile.environment.recurring_objects == ("red kite", "map")
