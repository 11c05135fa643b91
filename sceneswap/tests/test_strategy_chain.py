import io

import pytest
from PIL import Image

from sceneswap.app.catalog.catalog import load_scene_catalog
from sceneswap.app.core.capabilities import Capabilities
from sceneswap.app.schemas.batch import DegradationLevel, SourcePhotos
from sceneswap.app.synthesis.chain import StrategyChain
from sceneswap.app.synthesis.compositor import ImageCompositor
from sceneswap.app.synthesis.strategies import (
    CatalogOnlyStrategy,
    EchoStrategy,
    ProviderStrategy,
)
from sceneswap.tests.fixtures.images import (
    corrupt_image_bytes,
    jpeg_bytes,
    png_bytes,
    write_scene_dir,
)
from sceneswap.tests.fixtures.providers import (
    BrokenProvider,
    FailingProvider,
    SlowProvider,
    StaticProvider,
)

pytestmark = pytest.mark.anyio

SCENES = ["Actor.png", "Artist.png"]


def _capabilities(provider: bool = True, compositor: bool = True) -> Capabilities:
    return Capabilities(
        provider_enabled=provider,
        echo_forced=not provider,
        compositor_available=compositor,
    )


def _photos() -> SourcePhotos:
    return SourcePhotos(source=png_bytes(30, 30), target=png_bytes(30, 30))


@pytest.fixture
def catalog(tmp_path):
    write_scene_dir(tmp_path, SCENES, size=(100, 80))
    return load_scene_catalog(tmp_path, SCENES)


# ----------------------------------------------------------------------
# Composition
# ----------------------------------------------------------------------

def test_chain_order_with_provider(catalog):
    chain = StrategyChain.from_capabilities(
        _capabilities(),
        catalog=catalog,
        provider=StaticProvider(),
        compositor=ImageCompositor(),
    )

    assert chain.strategy_names == [
        "provider",
        "synthetic_composite",
        "catalog_only",
        "echo",
    ]


def test_provider_tier_is_omitted_when_disabled(catalog):
    chain = StrategyChain.from_capabilities(
        _capabilities(provider=False),
        catalog=catalog,
        provider=StaticProvider(),
        compositor=ImageCompositor(),
    )

    assert chain.strategy_names[0] == "synthetic_composite"


def test_forced_echo_drops_the_provider_tier(catalog):
    provider = StaticProvider()
    chain = StrategyChain.from_capabilities(
        Capabilities(
            provider_enabled=True,
            echo_forced=True,
            compositor_available=True,
        ),
        catalog=catalog,
        provider=provider,
        compositor=ImageCompositor(),
    )

    assert "provider" not in chain.strategy_names
    assert chain.strategy_names[0] == "synthetic_composite"


def test_chain_must_end_with_a_terminal_strategy(catalog):
    with pytest.raises(ValueError):
        StrategyChain([CatalogOnlyStrategy(catalog=catalog)])
    with pytest.raises(ValueError):
        StrategyChain([])


# ----------------------------------------------------------------------
# Degradation
# ----------------------------------------------------------------------

async def test_provider_success_is_full(catalog):
    provider = StaticProvider()
    chain = StrategyChain.from_capabilities(
        _capabilities(),
        catalog=catalog,
        provider=provider,
        compositor=ImageCompositor(),
    )

    artifact = await chain.produce(catalog.get("Actor.png"), _photos())

    assert artifact.degradation_level is DegradationLevel.FULL
    assert artifact.image_bytes == provider.image
    assert artifact.strategy == "provider"


async def test_provider_failure_falls_back_to_composite(catalog):
    provider = FailingProvider()
    chain = StrategyChain.from_capabilities(
        _capabilities(),
        catalog=catalog,
        provider=provider,
        compositor=ImageCompositor(),
    )

    artifact = await chain.produce(catalog.get("Actor.png"), _photos())

    assert provider.calls == 1
    assert artifact.degradation_level is DegradationLevel.SYNTHETIC_COMPOSITE
    with Image.open(io.BytesIO(artifact.image_bytes)) as img:
        assert img.size == (100, 80)


async def test_provider_timeout_is_a_decline(catalog):
    chain = StrategyChain(
        [
            ProviderStrategy(
                provider=SlowProvider(delay=2.0),
                catalog=catalog,
                timeout_seconds=0.05,
            ),
            CatalogOnlyStrategy(catalog=catalog),
            EchoStrategy(),
        ]
    )

    artifact = await chain.produce(catalog.get("Artist.png"), _photos())

    assert artifact.degradation_level is DegradationLevel.CATALOG_ONLY


async def test_unexpected_strategy_exception_is_a_decline(catalog):
    chain = StrategyChain.from_capabilities(
        _capabilities(compositor=False),
        catalog=catalog,
        provider=BrokenProvider(),
    )

    artifact = await chain.produce(catalog.get("Actor.png"), _photos())

    assert artifact.degradation_level is DegradationLevel.CATALOG_ONLY


async def test_without_compositor_the_scene_is_returned_unmodified(catalog):
    chain = StrategyChain.from_capabilities(
        _capabilities(provider=False, compositor=False),
        catalog=catalog,
    )
    scene = catalog.get("Actor.png")

    artifact = await chain.produce(scene, _photos())

    assert artifact.degradation_level is DegradationLevel.CATALOG_ONLY
    assert artifact.image_bytes == catalog.read_asset(scene)


async def test_undecodable_photo_skips_the_composite_tier(catalog):
    chain = StrategyChain.from_capabilities(
        _capabilities(provider=False),
        catalog=catalog,
        compositor=ImageCompositor(),
    )
    photos = SourcePhotos(source=corrupt_image_bytes(), target=png_bytes())

    artifact = await chain.produce(catalog.get("Actor.png"), photos)

    assert artifact.degradation_level is DegradationLevel.CATALOG_ONLY


async def test_missing_asset_degrades_to_echo(tmp_path):
    catalog = load_scene_catalog(tmp_path, ["Ghost.png"])
    provider = StaticProvider()
    chain = StrategyChain.from_capabilities(
        _capabilities(),
        catalog=catalog,
        provider=provider,
        compositor=ImageCompositor(),
    )
    photos = _photos()

    artifact = await chain.produce(catalog.get("Ghost.png"), photos)

    assert artifact.degradation_level is DegradationLevel.ECHO
    assert artifact.image_bytes == photos.source
    assert provider.calls == []


async def test_degradation_levels_are_ranked():
    ranks = [level.rank for level in DegradationLevel]

    assert ranks == sorted(ranks)
    assert DegradationLevel.FULL.rank < DegradationLevel.MISSING.rank


# ----------------------------------------------------------------------
# Photo preparation before upload
# ----------------------------------------------------------------------

def _provider_chain(catalog, provider, *, compositor=True, max_side=256):
    return StrategyChain.from_capabilities(
        _capabilities(),
        catalog=catalog,
        provider=provider,
        compositor=ImageCompositor() if compositor else None,
        provider_photo_max_side=max_side,
    )


async def test_oversized_photo_is_downscaled_before_upload(catalog):
    provider = StaticProvider()
    chain = _provider_chain(catalog, provider)
    photos = SourcePhotos(
        source=jpeg_bytes(1600, 1200),
        target=png_bytes(30, 30),
        source_content_type="image/jpeg",
    )

    artifact = await chain.produce(catalog.get("Actor.png"), photos)

    assert artifact.degradation_level is DegradationLevel.FULL
    sent, content_type = provider.sources[0]
    width, height, fmt = ImageCompositor().metadata(sent)
    assert (width, height) == (256, 192)
    assert fmt == "PNG"
    assert content_type == "image/png"


async def test_photo_within_the_limit_is_sent_unchanged(catalog):
    provider = StaticProvider()
    chain = _provider_chain(catalog, provider)
    photos = SourcePhotos(
        source=jpeg_bytes(200, 150),
        target=png_bytes(30, 30),
        source_content_type="image/jpeg",
    )

    await chain.produce(catalog.get("Actor.png"), photos)

    assert provider.sources == [(photos.source, "image/jpeg")]


async def test_without_compositor_photos_are_sent_unchanged(catalog):
    provider = StaticProvider()
    chain = _provider_chain(catalog, provider, compositor=False)
    photos = SourcePhotos(source=png_bytes(1600, 1200), target=png_bytes(30, 30))

    await chain.produce(catalog.get("Actor.png"), photos)

    assert provider.sources == [(photos.source, "image/png")]


async def test_undecodable_photo_is_sent_unchanged(catalog):
    provider = StaticProvider()
    chain = _provider_chain(catalog, provider)
    photos = SourcePhotos(
        source=corrupt_image_bytes(),
        target=png_bytes(30, 30),
        source_content_type="image/heic",
    )

    artifact = await chain.produce(catalog.get("Actor.png"), photos)

    assert artifact.degradation_level is DegradationLevel.FULL
    assert provider.sources == [(photos.source, "image/heic")]
