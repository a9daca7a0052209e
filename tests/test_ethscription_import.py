"""Ethscription provenance import tests."""

import json
from argparse import ArgumentParser

import pytest
from pydantic import ValidationError

from phunks_indexer.cli import import_ethscriptions
from phunks_indexer.models.ethscription import Ethscription
from phunks_indexer.services.ethscription_import import import_records, parse_records

HASH_ID = "0x" + "cd" * 32
SHA = "ef" * 32


def test_parse_accepts_wrapped_camel_case_items():
    records = parse_records(
        {
            "collection_items": [
                {"hashId": "0x" + "CD" * 32, "sha": "0x" + SHA, "tokenId": 3},
                {"id": "0x" + "01" * 32, "sha": SHA.upper(), "owner": "0xABCDEF"},
            ]
        }
    )

    assert [record.hash_id for record in records] == [HASH_ID, "0x" + "01" * 32]
    assert records[0].sha == SHA
    assert records[0].token_id == 3
    assert records[1].sha == SHA
    assert records[1].owner == "0xabcdef"


@pytest.mark.parametrize(
    "item",
    [
        {"hash_id": "0x1234", "sha": SHA},
        {"hash_id": HASH_ID, "sha": "zz" * 32},
        {"hash_id": HASH_ID},
    ],
)
def test_parse_rejects_invalid_items(item):
    with pytest.raises(ValidationError):
        parse_records([item])


def test_parse_rejects_non_list():
    with pytest.raises(ValueError):
        parse_records("not a list")


@pytest.mark.asyncio
async def test_import_fills_provenance_without_touching_event_owner(uow_factory):
    async with await uow_factory() as uow:
        await uow.ethscriptions.add(
            Ethscription(hash_id=HASH_ID, owner="0xevent", last_event_block=10)
        )

    records = parse_records(
        [
            {"hash_id": HASH_ID, "sha": SHA, "token_id": 1, "owner": "0xexport"},
            {"hash_id": "0x" + "02" * 32, "sha": SHA, "owner": "0xseed"},
        ]
    )
    async with await uow_factory() as uow:
        created, updated = await import_records(uow, records)

    assert (created, updated) == (1, 1)
    async with await uow_factory() as uow:
        known = await uow.ethscriptions.get(HASH_ID)
        new = await uow.ethscriptions.get("0x" + "02" * 32)
    assert known.sha == SHA
    assert known.token_id == 1
    assert known.owner == "0xevent"
    assert new.owner == "0xseed"


@pytest.mark.asyncio
async def test_cli_import_and_dry_run(tmp_path, uow_factory):
    path = tmp_path / "items.json"
    path.write_text(json.dumps([{"hash_id": HASH_ID, "sha": SHA}]))
    parser = ArgumentParser()
    import_ethscriptions.configure_parser(parser)

    assert await import_ethscriptions.run(
        parser.parse_args([str(path), "--dry-run"]), None, uow_factory
    ) == 0
    async with await uow_factory() as uow:
        assert await uow.ethscriptions.get(HASH_ID) is None

    assert await import_ethscriptions.run(parser.parse_args([str(path)]), None, uow_factory) == 0
    async with await uow_factory() as uow:
        assert (await uow.ethscriptions.get(HASH_ID)).sha == SHA


@pytest.mark.asyncio
async def test_cli_import_rejects_unreadable_file(tmp_path, uow_factory):
    parser = ArgumentParser()
    import_ethscriptions.configure_parser(parser)
    path = tmp_path / "broken.json"
    path.write_text("{not json")

    assert await import_ethscriptions.run(parser.parse_args([str(path)]), None, uow_factory) == 1
    missing = parser.parse_args([str(tmp_path / "missing.json")])
    assert await import_ethscriptions.run(missing, None, uow_factory) == 1
