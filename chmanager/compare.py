import logging
from typing import Optional

from .client import ClickHouseClient
from .config import ConnectionProfile
from .deadline import Deadline
from .models import CompareResult

logger = logging.getLogger(__name__)


def compare_queries(
    client: ClickHouseClient,
    profile: ConnectionProfile,
    query1: str,
    query2: str,
    deadline: Optional[Deadline] = None,
) -> CompareResult:
    """
    Run both queries one after the other, each in its own session, and pair
    their stats. A failing first query stops the comparison; degraded stats
    do not. No diffing happens here.
    """
    stats1 = client.execute_query_with_stats(profile, query1, deadline)
    logger.debug(
        "query1 finished in %d ms (from_log=%s)", stats1.execution_time_ms, stats1.from_log
    )
    stats2 = client.execute_query_with_stats(profile, query2, deadline)
    logger.debug(
        "query2 finished in %d ms (from_log=%s)", stats2.execution_time_ms, stats2.from_log
    )
    return CompareResult(query1_stats=stats1, query2_stats=stats2)
