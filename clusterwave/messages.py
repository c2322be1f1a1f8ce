"""
ClusterWave Wire Messages
==========================
Closed set of protocol messages exchanged between nodes.

Every message kind is a frozen dataclass; a packet is an ordered tuple of
messages transmitted together. Receivers dispatch on the message class.

Sizes follow a fixed wire model (used to batch UPDATE packets):
- node record: id 8, position 24, degree 1, cluster id 8, CH address 8,
  timestamp 8, starting flag 1, base direction 16  = 74 bytes
- sequence number: 4 bytes
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, List, Sequence, Tuple, Union
import numpy as np

from .config import IncidentType
from .density import DistributionMap
from .registry import NodeRecord


RECORD_WIRE_SIZE = 74
SEQ_WIRE_SIZE = 4
ID_WIRE_SIZE = 8
TIME_WIRE_SIZE = 8
VECTOR_WIRE_SIZE = 24
CELL_WIRE_SIZE = 4  # float32 per grid cell


class MessageKind(Enum):
    """Wire message kinds"""
    CLUSTER_INFO = "cluster_info"
    INITIATE_CLUSTER = "initiate_cluster"
    FORM_CLUSTER = "form_cluster"
    NEIGHBOR_CLUSTER_INFO = "neighbor_cluster_info"
    DISTRO_MAP = "distro_map"
    INTER_CLUSTER_PROPAGATION = "inter_cluster_propagation"
    INTRA_CLUSTER_PROPAGATION = "intra_cluster_propagation"
    INTER_NODE_PROPAGATION = "inter_node_propagation"
    ACK = "ack"
    INCIDENT_EVENT = "incident_event"


@dataclass(frozen=True, eq=False)
class ClusterInfo:
    """Periodic identity/position broadcast"""
    kind: ClassVar[MessageKind] = MessageKind.CLUSTER_INFO
    seq: int
    sender: NodeRecord

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + RECORD_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class InitiateCluster:
    """Cluster head announces candidacy"""
    kind: ClassVar[MessageKind] = MessageKind.INITIATE_CLUSTER
    seq: int
    cluster_id: int
    sender: NodeRecord

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + ID_WIRE_SIZE + RECORD_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class FormCluster:
    """Cluster head confirms formation"""
    kind: ClassVar[MessageKind] = MessageKind.FORM_CLUSTER
    seq: int
    sender: NodeRecord

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + RECORD_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class NeighborClusterInfo:
    """Topology gossip: a neighbouring cluster head seen by a member"""
    kind: ClassVar[MessageKind] = MessageKind.NEIGHBOR_CLUSTER_INFO
    seq: int
    cluster_id: int
    neighbor_head: NodeRecord

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + ID_WIRE_SIZE + RECORD_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class DistroMap:
    """Density summary exchange between cluster heads"""
    kind: ClassVar[MessageKind] = MessageKind.DISTRO_MAP
    cluster_id: int
    sender: NodeRecord
    distribution: DistributionMap
    seq: int = 0

    def serialized_size(self) -> int:
        cells = self.distribution.size * self.distribution.size
        return SEQ_WIRE_SIZE + ID_WIRE_SIZE + RECORD_WIRE_SIZE + cells * CELL_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class InterClusterPropagation:
    """Candidate forwarding offer from one cluster head to another"""
    kind: ClassVar[MessageKind] = MessageKind.INTER_CLUSTER_PROPAGATION
    seq: int
    cluster_id: int
    source: np.ndarray
    destination: np.ndarray
    direction: np.ndarray
    start_time: float

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + ID_WIRE_SIZE + 3 * VECTOR_WIRE_SIZE + TIME_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class IntraClusterPropagation:
    """Cluster head to member wavefront schedule"""
    kind: ClassVar[MessageKind] = MessageKind.INTRA_CLUSTER_PROPAGATION
    seq: int
    cluster_id: int
    starting_node_id: int
    start_time: float
    direction: np.ndarray

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + 2 * ID_WIRE_SIZE + TIME_WIRE_SIZE + VECTOR_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class InterNodePropagation:
    """Node-to-node wavefront relaxation"""
    kind: ClassVar[MessageKind] = MessageKind.INTER_NODE_PROPAGATION
    seq: int
    cluster_id: int
    position: np.ndarray
    direction: np.ndarray
    start_time: float

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + ID_WIRE_SIZE + 2 * VECTOR_WIRE_SIZE + TIME_WIRE_SIZE


@dataclass(frozen=True, eq=False)
class Ack:
    """Application-level acknowledgment"""
    kind: ClassVar[MessageKind] = MessageKind.ACK
    seq: int
    cluster_id: int
    acknowledged_kind: MessageKind

    def serialized_size(self) -> int:
        return SEQ_WIRE_SIZE + ID_WIRE_SIZE + 1


@dataclass(frozen=True, eq=False)
class IncidentEvent:
    """Out-of-band event, relayed by the cluster head to its members"""
    kind: ClassVar[MessageKind] = MessageKind.INCIDENT_EVENT
    timestamp: float
    cluster_id: int
    incident_type: IncidentType

    def serialized_size(self) -> int:
        return TIME_WIRE_SIZE + ID_WIRE_SIZE + 1


Message = Union[
    ClusterInfo, InitiateCluster, FormCluster, NeighborClusterInfo, DistroMap,
    InterClusterPropagation, IntraClusterPropagation, InterNodePropagation,
    Ack, IncidentEvent,
]

Packet = Tuple[Message, ...]


def frozen_vector(v) -> np.ndarray:
    """Read-only float copy of a vector for a message payload"""
    arr = np.array(v, dtype=np.float64, copy=True).reshape(-1)
    arr.setflags(write=False)
    return arr


def packet_size(messages: Sequence[Message]) -> int:
    """Serialized size of a packet"""
    return sum(m.serialized_size() for m in messages)


def batch_messages(head: Message, entries: Sequence[Message],
                   max_size: int) -> List[Packet]:
    """
    Split head + entries into packets no larger than max_size.

    The head message opens the first packet. Entries are appended in order;
    when the next entry would exceed the cap the current packet is flushed
    and a new one started.
    """
    packets: List[Packet] = []
    current: List[Message] = [head]
    size = head.serialized_size()

    for entry in entries:
        entry_size = entry.serialized_size()
        if current and size + entry_size > max_size:
            packets.append(tuple(current))
            current = []
            size = 0
        current.append(entry)
        size += entry_size

    if current:
        packets.append(tuple(current))
    return packets
