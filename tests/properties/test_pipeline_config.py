"""Property-based tests for pipeline configuration validation."""

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from pipeline_manager.models.pipeline import ImageSpec, PipelineConfig

BASE = {"app_name": "shop", "git_repo_url": "https://example.com/shop.git"}


@st.composite
def dns_label(draw):
    """Generate valid DNS-1123 labels."""
    length = draw(st.integers(min_value=1, max_value=63))
    alphabet = "abcdefghijklmnopqrstuvwxyz0123456789"
    if length == 1:
        return draw(st.sampled_from(alphabet))
    start = draw(st.sampled_from(alphabet))
    middle = "".join(
        draw(st.lists(st.sampled_from(alphabet + "-"), min_size=length - 2, max_size=length - 2))
    )
    end = draw(st.sampled_from(alphabet))
    return start + middle + end


docker_tag = st.from_regex(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}", fullmatch=True)


@given(app_name=dns_label())
def test_valid_app_names_accepted(app_name):
    config = PipelineConfig(**{**BASE, "app_name": app_name})

    assert config.app_name == app_name
    assert config.effective_sonar_project_key == app_name


@given(
    app_name=st.one_of(
        st.just(""),
        st.just("-shop"),
        st.just("shop-"),
        st.just("Shop"),
        st.just("shop_app"),
        st.text(alphabet="abc", min_size=64, max_size=80),
    )
)
def test_invalid_app_names_rejected(app_name):
    with pytest.raises(ValidationError):
        PipelineConfig(**{**BASE, "app_name": app_name})


@given(tag=docker_tag, registry=st.sampled_from(["", "registry.example.com", "host:5000/"]))
def test_image_references_use_tag_and_registry(tag, registry):
    """For any valid tag, every image reference ends with that tag."""
    config = PipelineConfig(**{**BASE, "image_tag": tag, "registry": registry})

    for name, reference in config.image_references().items():
        assert reference.endswith(f":{tag}")
        assert "//" not in reference
        if registry:
            assert reference.startswith(registry.rstrip("/") + "/")
        else:
            assert reference.startswith("app/")


@given(tag=st.sampled_from(["", ".hidden", "-dash", "with space", "x" * 129, "a/b"]))
def test_invalid_tags_rejected(tag):
    with pytest.raises(ValidationError):
        PipelineConfig(**{**BASE, "image_tag": tag})


@given(
    region=st.from_regex(r"[a-z]{2}(-[a-z]+)+-[0-9]", fullmatch=True),
    build_number=st.integers(min_value=1, max_value=10**6),
)
def test_environment_overrides_are_applied(region, build_number):
    config = PipelineConfig(**BASE).with_environment(
        {"AWS_REGION": region, "BUILD_NUMBER": str(build_number)}
    )

    assert config.aws_region == region
    assert config.image_tag == str(build_number)


@given(names=st.lists(dns_label(), min_size=1, max_size=5))
def test_image_names_must_be_unique(names):
    images = [ImageSpec(name=n, repository=f"app/{n}") for n in names]

    if len(set(names)) == len(names):
        assert len(PipelineConfig(**BASE, images=images).images) == len(names)
    else:
        with pytest.raises(ValidationError):
            PipelineConfig(**BASE, images=images)
