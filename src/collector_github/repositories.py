"""Resolution of the monitored repository set."""

import logging
from typing import Iterable, List, Sequence, Tuple

from .client import GitHubClient
from .paginator import BackoffPolicy, paginate


logger = logging.getLogger(__name__)


def dedupe(names: Iterable[str]) -> List[str]:
    """Drop repeats, keeping the first occurrence of each name."""
    seen = set()
    unique = []
    for name in names:
        if name not in seen:
            seen.add(name)
            unique.append(name)
    return unique


async def list_organization_repositories(
    client: GitHubClient, policy: BackoffPolicy, org: str
) -> List[str]:
    logger.info(f"Fetching repositories for organization {org}")
    result = await paginate(
        lambda page, per_page: client.list_organization_repositories(
            org, page=page, per_page=per_page
        ),
        policy,
        what=f"list repositories of {org}",
    )
    names = [repo.full_name for repo in result.items if repo.full_name]
    logger.info(f"Fetched {len(names)} repositories for organization {org}")
    return names


async def resolve_repositories(
    client: GitHubClient,
    policy: BackoffPolicy,
    repositories: Sequence[str],
    organizations: Sequence[str],
) -> Tuple[str, ...]:
    """Explicit repositories win outright; otherwise enumerate organizations."""
    if repositories:
        logger.info(f"Using {len(repositories)} explicitly configured repositories")
        return tuple(dedupe(repositories))

    if not organizations:
        logger.info("No repositories or organizations configured")
        return ()

    discovered: List[str] = []
    for org in organizations:
        if not org:
            continue
        discovered.extend(await list_organization_repositories(client, policy, org))

    unique = dedupe(discovered)
    logger.info(
        f"Discovered {len(unique)} unique repositories from "
        f"{len(organizations)} organization(s)"
    )
    return tuple(unique)
