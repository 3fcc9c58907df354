"""NFT digest over a flat project/transfer/token/mint payload."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Sequence

from chainpulse.domain import NftEntity

from .common import dedupe, isoformat_ts, top_k

MOST_TRADED_LIMIT = 50
RECENT_TRANSFER_LIMIT = 100
RECENT_MINT_LIMIT = 100
FEATURED_PROJECT_LIMIT = 50


@dataclass(slots=True)
class _ProjectActivity:
    transfers: int = 0
    mints: int = 0
    name: str | None = None

    @property
    def total(self) -> int:
        return self.transfers + self.mints


def _newest_first(entity: NftEntity) -> tuple[int, str]:
    return (-(entity.block_timestamp or 0), entity.entity_id)


def summarize_nft(entities: Sequence[NftEntity]) -> dict[str, Any]:
    """Rank tokens and projects by activity and list recent transfers and mints."""

    entities = dedupe(
        entities,
        lambda e: (e.entity_id, e.entity_type, e.tag.protocol, e.tag.network),
    )
    by_type: dict[str, list[NftEntity]] = defaultdict(list)
    for entity in entities:
        by_type[entity.entity_type].append(entity)

    projects = by_type["project"]
    transfers = by_type["transfer"]
    tokens = by_type["token"]
    mints = by_type["mint"]

    activity: dict[str, _ProjectActivity] = defaultdict(_ProjectActivity)
    for transfer in transfers:
        if transfer.project_id:
            stats = activity[transfer.project_id]
            stats.transfers += 1
            stats.name = stats.name or transfer.project_name
    for mint in mints:
        if mint.project_id:
            stats = activity[mint.project_id]
            stats.mints += 1
            stats.name = stats.name or mint.project_name

    project_index = {project.project_id: project for project in projects if project.project_id}
    featured_ids = set(activity) | set(project_index)

    def _invocations(project_id: str) -> int:
        project = project_index.get(project_id)
        return (project.invocations or 0) if project else 0

    featured = []
    for project_id in top_k(
        featured_ids,
        lambda pid: (-(activity[pid].total if pid in activity else 0), -_invocations(pid), pid),
        FEATURED_PROJECT_LIMIT,
    ):
        project = project_index.get(project_id)
        stats = activity.get(project_id) or _ProjectActivity()
        featured.append(
            {
                "projectId": project_id,
                "name": (project.project_name if project else None) or stats.name,
                "artist": project.artist_name if project else None,
                "transfers": stats.transfers,
                "mints": stats.mints,
                "invocations": project.invocations if project else None,
                "maxInvocations": project.max_invocations if project else None,
                "active": project.active if project else None,
                "complete": project.complete if project else None,
                "priceWei": project.price_per_token_wei if project else None,
                "currency": project.currency_symbol if project else None,
            }
        )

    collectors = {transfer.to_address for transfer in transfers if transfer.to_address}
    collectors.update(token.owner_address for token in tokens if token.owner_address)

    return {
        "overview": {
            "totalProjects": len(projects),
            "totalTransfers": len(transfers),
            "totalTokens": len(tokens),
            "totalMints": len(mints),
            "activeProjects": sum(1 for project in projects if project.active),
            "projectsWithActivity": len(activity),
            "uniqueCollectors": len(collectors),
        },
        "mostTradedNFTs": [
            {
                "tokenId": token.token_id,
                "projectId": token.project_id,
                "project": token.project_name,
                "owner": token.owner_address,
                "transferCount": token.transfer_count or 0,
                "lastActivity": isoformat_ts(token.block_timestamp),
            }
            for token in top_k(
                tokens, lambda t: (-(t.transfer_count or 0), t.entity_id), MOST_TRADED_LIMIT
            )
        ],
        "recentTransfers": [
            {
                "tokenId": transfer.token_id,
                "project": transfer.project_name,
                "from": transfer.from_address,
                "to": transfer.to_address,
                "blockNumber": transfer.block_number,
                "timestamp": isoformat_ts(transfer.block_timestamp),
                "txHash": transfer.transaction_hash,
            }
            for transfer in top_k(transfers, _newest_first, RECENT_TRANSFER_LIMIT)
        ],
        "recentMints": [
            {
                "tokenId": mint.token_id,
                "project": mint.project_name,
                "minter": mint.minter_address,
                "currency": mint.currency_symbol,
                "timestamp": isoformat_ts(mint.block_timestamp),
                "txHash": mint.transaction_hash,
            }
            for mint in top_k(mints, _newest_first, RECENT_MINT_LIMIT)
        ],
        "featuredProjects": featured,
    }


__all__ = ["summarize_nft"]
