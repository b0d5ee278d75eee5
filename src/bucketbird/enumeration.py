"""Exhaustive prefix enumeration over a paginated object listing."""

import logging

from bucketbird.storage.backend import ObjectStoreClient
from bucketbird.storage.models import StoreObject

logger = logging.getLogger(__name__)


async def enumerate_all(
    client: ObjectStoreClient, bucket: str, prefix: str = ""
) -> list[StoreObject]:
    """Collect every object under ``prefix`` by following continuation tokens.

    Empty pages that still carry a token are followed. Keys are returned in
    the order the store produced them; ordering is a projection concern.
    If any page request fails, the entries gathered so far are dropped and
    the error propagates, so callers never see a partial listing.

    Args:
        client: The object store client.
        bucket: The bucket name.
        prefix: Key prefix ("" for the whole bucket).

    Returns:
        Every raw entry under the prefix.
    """
    result: list[StoreObject] = []
    token: str | None = None
    pages = 0

    while True:
        page = await client.list_page(bucket, prefix, continuation_token=token)
        pages += 1
        result.extend(page.objects)
        if page.is_truncated and page.next_token:
            token = page.next_token
            continue
        break

    logger.debug(
        "Enumerated %d object(s) under %s/%s in %d page(s)", len(result), bucket, prefix, pages
    )
    return result
