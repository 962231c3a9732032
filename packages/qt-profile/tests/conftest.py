"""Pytest configuration and fixtures for qt-profile tests."""

from pathlib import Path
from string import Template
from typing import Callable

import pytest

from qt_profile.analyzer import QueryType, StorageBackend, ThresholdSet, compute_thresholds
from qt_profile.analyzer.rules import RuleContext
from qt_profile.baseline import QueryComplexity
from qt_profile.models import ClusterInfo, OperatorNode, ProfileDocument
from qt_profile.parser import parse_profile

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# =============================================================================
# PROFILE TEXT FIXTURES
# =============================================================================

SINGLE_SCAN_TEMPLATE = Template("""\
Query:
  Summary:
     - Query ID: $query_id
     - Start Time: 2024-09-12 09:00:00
     - Total: $total
     - Query Type: $query_type
     - Query State: Finished
     - User: etl
     - Default Db: ssb
     - Sql Statement: $sql
  Planner:
     - -- Total[1] $planner_total
     - -- Optimizer[1] $optimizer
  Execution:
     - Topology: {"rootId":0,"nodes":[{"id":0,"name":"OLAP_SCAN","properties":{},"children":[]}]}
     - QueryExecutionWallTime: $total
     - QueryPeakMemoryUsagePerNode: 256.000 MB
    Fragment 0:
       - BackendNum: 3
       - InstanceIds: i-1,i-2,i-3
       Pipeline (id=0):
          RESULT_SINK (plan_node_id=-1):
            CommonMetrics:
               - OperatorTotalTime: 1ms
               - PushRowNum: 1.000M (1000000)
            UniqueMetrics:
               - SinkType: MYSQL_PROTOCAL
          OLAP_SCAN (plan_node_id=0):
            CommonMetrics:
               - OperatorTotalTime: $scan_time
               - PullRowNum: 1.000M (1000000)
               - OperatorPeakMemoryUsage: 128.000 MB
            UniqueMetrics:
               - Table: lineorder
               - ScanTime: $scan_time
               - BytesRead: 512.000 MB
               - InputRows: 50.000M (50000000)
""")

SINGLE_SCAN_SQL = "SELECT lo_orderkey FROM lineorder WHERE lo_quantity > 10"


@pytest.fixture
def sample_profile_path() -> Path:
    """Three-fragment scan -> join -> exchange -> result sink profile."""
    return FIXTURES_DIR / "sample_profile.txt"


@pytest.fixture
def sample_profile_text(sample_profile_path) -> str:
    return sample_profile_path.read_text(encoding="utf-8")


@pytest.fixture
def sample_document(sample_profile_text) -> ProfileDocument:
    return parse_profile(sample_profile_text)


@pytest.fixture
def make_scan_profile() -> Callable[..., str]:
    """Build a single-scan profile with the given timings."""

    def build(
        scan_time: str = "12s",
        total: str = "13s",
        sql: str = SINGLE_SCAN_SQL,
        query_type: str = "Query",
        query_id: str = "c0ffee00-0000-0000-0000-000000000001",
        planner_total: str = "20ms",
        optimizer: str = "10ms",
    ) -> str:
        return SINGLE_SCAN_TEMPLATE.substitute(
            scan_time=scan_time,
            total=total,
            sql=sql,
            query_type=query_type,
            query_id=query_id,
            planner_total=planner_total,
            optimizer=optimizer,
        )

    return build


# =============================================================================
# THRESHOLD / CONTEXT FIXTURES
# =============================================================================

@pytest.fixture
def cluster() -> ClusterInfo:
    """Three backends with 64GB each."""
    return ClusterInfo(backend_num=3)


@pytest.fixture
def thresholds(cluster) -> ThresholdSet:
    """Default thresholds for a medium SELECT on local storage."""
    return compute_thresholds(cluster, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.MEDIUM)


@pytest.fixture
def make_context(sample_document, thresholds) -> Callable[..., RuleContext]:
    """Wrap a hand-built node in a RuleContext over the sample document."""

    def build(node: OperatorNode = None, fragment=None, document: ProfileDocument = None, rule_thresholds=None):
        return RuleContext(
            document=document or sample_document,
            thresholds=rule_thresholds or thresholds,
            node=node,
            fragment=fragment,
        )

    return build
