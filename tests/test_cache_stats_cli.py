"""Cache statistics CLI tests."""

import json

import pytest

from nanobanana.cli.cache_stats import async_main, format_table, parse_args
from nanobanana.repositories.image_generation import ProviderStats


def test_parse_args_defaults():
    args = parse_args([])

    assert args.provider is None
    assert args.json is False
    assert args.verbose is False


def test_parse_args_options():
    args = parse_args(["--provider", "nanobanana", "--json", "-v"])

    assert args.provider == "nanobanana"
    assert args.json is True
    assert args.verbose is True


def test_format_table():
    table = format_table(
        [
            ProviderStats(
                provider="nanobanana",
                total_generations=12,
                successful_generations=10,
                failed_generations=2,
                unique_fingerprints=11,
            )
        ]
    )

    lines = table.splitlines()
    assert lines[0].split() == ["provider", "total", "success", "failed", "unique"]
    assert lines[2].split() == ["nanobanana", "12", "10", "2", "11"]


def test_format_table_empty():
    assert "(no generations recorded)" in format_table([])


@pytest.mark.asyncio
async def test_async_main_prints_json(postgres_container, session, png_bytes, monkeypatch, capsys):
    from nanobanana.repositories.image_generation import ImageGenerationRepository
    from nanobanana.services.image_generation.cache_key import build_cache_key
    from nanobanana.services.image_generation.params import GenerationParams

    params = GenerationParams(prompt="wizard", width=512, height=512, style="nanobanana")
    await ImageGenerationRepository(session).put_success(
        params, build_cache_key(params), png_bytes, "image/png", "nanobanana"
    )
    await session.commit()

    monkeypatch.setenv("DATABASE_URL", postgres_container.get_connection_url(driver="psycopg"))

    exit_code = await async_main(["--json"])

    assert exit_code == 0
    out = capsys.readouterr().out
    output = json.loads(out[out.index("[\n") :])
    assert output == [
        {
            "provider": "nanobanana",
            "total_generations": 1,
            "successful_generations": 1,
            "failed_generations": 0,
            "unique_fingerprints": 1,
        }
    ]
