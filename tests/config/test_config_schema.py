# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Schema-level validation tests.

These focus on the pydantic models themselves: boundary values, constraint
enforcement, and structural correctness.
"""

import pytest
from pydantic import ValidationError

from fastenc.config.schema import (
    ConversionConfig,
    FastencConfig,
    GlobalConfig,
    SelfCheckConfig,
)


class TestGlobalConfigSchema:
    def test_seed_must_be_non_negative(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig(config_version="1.0.0", seed=-1)

    def test_seed_zero_is_valid(self) -> None:
        config = GlobalConfig(config_version="1.0.0", seed=0)
        assert config.seed == 0

    def test_defaults(self) -> None:
        config = GlobalConfig(config_version="1.0.0")
        assert config.log_level == "INFO"
        assert config.project_name == "fastenc"
        assert config.log_file is None

    def test_config_version_is_required(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig()  # type: ignore[call-arg]

    def test_is_frozen(self) -> None:
        config = GlobalConfig(config_version="1.0.0")
        with pytest.raises(ValidationError):
            config.seed = 1  # type: ignore[misc]


class TestConversionConfigSchema:
    def test_defaults_match_in_place_strict_conversion(self) -> None:
        config = ConversionConfig(config_version="1.0.0")
        assert config.keep_original_model is False
        assert config.strict is True
        assert config.exclude_layers == []

    def test_unknown_field_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ConversionConfig(config_version="1.0.0", fuse_everything=True)  # type: ignore[call-arg]


class TestSelfCheckConfigSchema:
    def test_defaults(self) -> None:
        config = SelfCheckConfig(config_version="1.0.0")
        assert config.embed_dim == 64
        assert config.num_heads == 4
        assert config.sequence_lengths == [5, 8, 8]
        assert config.activation == "relu"

    def test_unknown_activation_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SelfCheckConfig(config_version="1.0.0", activation="swish")  # type: ignore[arg-type]

    def test_empty_sequence_lengths_are_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SelfCheckConfig(config_version="1.0.0", sequence_lengths=[])

    def test_zero_length_sequence_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SelfCheckConfig(config_version="1.0.0", sequence_lengths=[0, 4])

    def test_tolerance_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            SelfCheckConfig(config_version="1.0.0", atol=0.0)


class TestFastencConfigSchema:
    def test_requires_global_section(self) -> None:
        with pytest.raises(ValidationError):
            FastencConfig()  # type: ignore[call-arg]

    def test_rejects_top_level_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            FastencConfig.model_validate({
                "global": {"config_version": "1.0.0"},
                "unknown_section": {"something": True},
            })

    def test_optional_sections_default_to_none(self) -> None:
        config = FastencConfig.model_validate({"global": {"config_version": "1.0.0"}})
        assert config.conversion is None
        assert config.selfcheck is None
