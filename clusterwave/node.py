"""
ClusterWave Protocol Node
==========================
Per-node protocol state machine.

A ClusterNode elects or joins a cluster head, keeps its neighbour tables
fresh, exchanges distribution maps between cluster heads and finally
schedules its own wavefront activation.

State flow:
    INIT -> HEAD_ELECTION -> UPDATE (loop) -> EXCHANGE_DISTRO_MAP
         -> DECIDE_PROPAGATION_PARAM -> PROPAGATION_READY
         -> PROPAGATION_RUNNING -> PROPAGATION_COMPLETE (<-> ACTIVE in reverse mode)

Everything happens inside message-delivery or timer callbacks; there is no
blocking and no state shared with other nodes.
"""

from functools import partial
from typing import Callable, Dict, List, Optional, Sequence
import logging
import math
import numpy as np

from .config import IncidentType, NodeDegree, NodeStatus, ProtocolConfig
from .contracts import DegenerateGeometryError, MobilityModel, Scheduler, TimerHandle, Transport
from .density import DistributionMap, build_distribution_map, degenerate_map
from .geometry import as_vector, distance
from .messages import (
    Ack, ClusterInfo, DistroMap, FormCluster, IncidentEvent, InitiateCluster,
    InterClusterPropagation, InterNodePropagation, IntraClusterPropagation,
    Message, MessageKind, NeighborClusterInfo, Packet, batch_messages, frozen_vector,
)
from .propagation import PropagationCoordinator
from .registry import NeighborRegistry, NodeRecord
from .retransmit import RetransmitTask

logger = logging.getLogger(__name__)

StatusListener = Callable[['ClusterNode'], None]


class ClusterNode:
    """
    Clustering and wavefront protocol engine for one node.

    Collaborators are injected: a Scheduler for time, a Transport for
    packets and a MobilityModel for the node's own position.

    Key operations:
    1. start() / stop() lifecycle
    2. deliver(sender_id, packet) inbound dispatch
    3. Timer-driven transitions (send, maintenance, exchange, decide, wave)
    """

    def __init__(self, node_id: int, config: ProtocolConfig, scheduler: Scheduler,
                 transport: Transport, mobility: MobilityModel,
                 is_starting_node: bool = False,
                 base_direction: Optional[Sequence[float]] = None):
        self.config = config
        self.scheduler = scheduler
        self.transport = transport
        self.mobility = mobility

        self.record = NodeRecord(
            node_id=node_id,
            position=as_vector(mobility.position(scheduler.now)),
            timestamp=scheduler.now,
            is_starting_node=is_starting_node,
            base_direction=None if base_direction is None else as_vector(base_direction),
        )
        self.registry = NeighborRegistry(self.record)
        self.coordinator = PropagationCoordinator(config)
        self.status = NodeStatus.INIT
        self.distribution: Optional[DistributionMap] = None

        # Mode is fixed for the lifetime of the node
        self.reverse_mode = config.propagation.reverse_propagation_mode

        # Timers
        self._send_event: Optional[TimerHandle] = None
        self._election_event: Optional[TimerHandle] = None
        self._maintenance_event: Optional[TimerHandle] = None
        self._propagation_event: Optional[TimerHandle] = None
        self._incident_event: Optional[TimerHandle] = None
        self._decide_event: Optional[TimerHandle] = None
        self._oneshot_events: List[TimerHandle] = []

        # Counters
        self.sent_counter = 0
        self.recv_counter = 0
        self.formation_counter = 0
        self.changes_counter = 0
        self.incident_counter = 0
        self.incident_echoes = 0
        self.overall_incident_delay = 0.0
        self.incident_timestamp: Optional[float] = None

        self._listeners: List[StatusListener] = []
        self.running = False

        self._handlers: Dict[type, Callable[[int, Message], None]] = {
            ClusterInfo: self._on_cluster_info,
            InitiateCluster: self._on_initiate_cluster,
            FormCluster: self._on_form_cluster,
            NeighborClusterInfo: self._on_neighbor_cluster_info,
            DistroMap: self._on_distro_map,
            InterClusterPropagation: self._on_inter_cluster_propagation,
            IntraClusterPropagation: self._on_intra_cluster_propagation,
            InterNodePropagation: self._on_inter_node_propagation,
            Ack: self._on_ack,
            IncidentEvent: self._on_incident_event,
        }

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def node_id(self) -> int:
        return self.record.node_id

    @property
    def degree(self) -> NodeDegree:
        return self.record.degree

    @property
    def cluster_id(self) -> Optional[int]:
        return self.record.cluster_id

    @property
    def position(self) -> np.ndarray:
        return self.record.position

    @property
    def propagation(self):
        return self.coordinator.state

    @property
    def now(self) -> float:
        return self.scheduler.now

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Validate configuration, join the transport and arm the clustering window.

        Raises:
            ConfigurationError: invalid configuration (fatal)
        """
        self.config.validate()
        c = self.config.clustering

        self.transport.register(self.node_id, self.deliver)
        self.registry.clear()
        self.status = NodeStatus.INIT
        self.running = True

        self._schedule_once(max(0.0, c.start_time - self.now), self.start_clustering)
        if c.stop_time is not None:
            self._schedule_once(max(0.0, c.stop_time - self.now), self.stop_clustering)
        if c.incident_enabled:
            self.schedule_incident(c.start_time - self.now + c.incident_window)

        logger.debug("Node %d started", self.node_id)

    def stop(self):
        """Leave the transport and cancel every pending timer"""
        self.running = False
        for handle in [self._send_event, self._election_event, self._maintenance_event,
                       self._propagation_event, self._incident_event,
                       self._decide_event] + self._oneshot_events:
            if handle is not None:
                handle.cancel()
        self._oneshot_events.clear()
        self.coordinator.distro_map_acks.cancel_all()
        self.coordinator.inter_cluster_acks.cancel_all()
        self.transport.unregister(self.node_id)
        logger.debug("Node %d stopped", self.node_id)

    def _schedule_once(self, delay: float, callback: Callable, *args) -> TimerHandle:
        """Schedule a one-shot callback that stop() can withdraw"""
        self._oneshot_events = [h for h in self._oneshot_events if h.is_pending]
        handle = self.scheduler.schedule(delay, callback, *args)
        self._oneshot_events.append(handle)
        return handle

    def add_status_listener(self, listener: StatusListener):
        """Call listener(node) whenever cluster id or degree changes"""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Clustering window
    # ------------------------------------------------------------------

    def acquire_mobility_info(self):
        self.record.timestamp = self.now
        self.record.position = as_vector(self.mobility.position(self.now))

    def start_clustering(self):
        c = self.config.clustering
        self.schedule_transmit(c.time_window)
        self.acquire_mobility_info()
        self._maintenance_event = self.scheduler.schedule(
            c.election_delay, self.update_neighbor_list)

    def stop_clustering(self):
        """End of clustering: heads exchange maps, lone starting nodes fire directly"""
        if self._maintenance_event is not None:
            self._maintenance_event.cancel()
        self.acquire_mobility_info()
        self._set_status(NodeStatus.EXCHANGE_DISTRO_MAP)

        if self.degree == NodeDegree.CH:
            self.update_distro_map()
            self.exchange_distro_map()
            self._decide_event = self.scheduler.schedule(
                self.config.propagation.exchange_grace_period, self.decide_propagation_param)
        elif self.degree == NodeDegree.STANDALONE and self.record.is_starting_node:
            state = self.propagation
            self.coordinator.begin_wave(self.node_id, self.now)
            state.lower_start_time(state.first_start_time, self.now, inclusive=True)
            if self.record.base_direction is not None:
                state.direction = self.record.base_direction.copy()
            self.schedule_inter_node_propagation()

    def form_cluster(self):
        """Externally triggered formation: become head immediately"""
        self._set_status(NodeStatus.FORMATION)
        self.schedule_transmit(0.0)

    def update_neighbors(self):
        self._set_status(NodeStatus.UPDATE)
        self.schedule_transmit(self.config.clustering.interval)

    # ------------------------------------------------------------------
    # Transmission
    # ------------------------------------------------------------------

    def schedule_transmit(self, delay: float):
        """Arm the send loop unless a send is already pending"""
        if self._send_event is not None and self._send_event.is_pending:
            return
        self._send_event = self.scheduler.schedule(delay, self.send)

    def send(self):
        """Status-driven periodic transmission"""
        c = self.config.clustering
        prev = (self.record.cluster_id, self.record.degree)

        if self.status == NodeStatus.INIT:
            self.acquire_mobility_info()
            self._broadcast((ClusterInfo(seq=self.sent_counter, sender=self.record.copy()),))
            self.formation_counter += 1
            if self._election_event is not None:
                self._election_event.cancel()
            self._election_event = self.scheduler.schedule(c.election_delay, self.initiate_cluster)

        elif self.status == NodeStatus.HEAD_ELECTION:
            self.acquire_mobility_info()
            self.record.declare_head()
            self._broadcast((InitiateCluster(seq=self.sent_counter, cluster_id=self.node_id,
                                             sender=self.record.copy()),))
            self.formation_counter += 1
            self._set_status(NodeStatus.UPDATE)
            self.schedule_transmit(c.election_delay)

        elif self.status == NodeStatus.FORMATION:
            self.acquire_mobility_info()
            self.record.declare_head()
            self._broadcast((FormCluster(seq=self.sent_counter, sender=self.record.copy()),))
            self.formation_counter += 1
            self._schedule_once(0.0, self.update_neighbors)

        elif self.status == NodeStatus.UPDATE:
            self.acquire_mobility_info()
            for packet in self.build_update_packets():
                self._broadcast(packet)
            self.schedule_transmit(c.interval)

        elif (self.status in (NodeStatus.DECIDE_PROPAGATION_PARAM, NodeStatus.PROPAGATION_READY)
              and self.degree == NodeDegree.CH):
            state = self.propagation
            self._broadcast((IntraClusterPropagation(
                seq=self.sent_counter,
                cluster_id=self.cluster_id,
                starting_node_id=state.first_start_node_id,
                start_time=state.first_start_time,
                direction=frozen_vector(state.direction),
            ),))
            self.schedule_transmit(c.interval)

        else:
            logger.debug("Node %d: nothing to send in %s", self.node_id, self.status.value)

        self._notify_if_changed(prev)

    def build_update_packets(self) -> List[Packet]:
        """Own ClusterInfo plus one NeighborClusterInfo per known foreign cluster"""
        seq = self.sent_counter
        head = ClusterInfo(seq=seq, sender=self.record.copy())
        entries = [
            NeighborClusterInfo(seq=seq, cluster_id=self.cluster_id,
                                neighbor_head=self.registry.neighbor_clusters[cid].copy())
            for cid in sorted(self.registry.neighbor_clusters)
        ]
        return batch_messages(head, entries, self.config.clustering.max_packet_size)

    def _broadcast(self, packet: Packet) -> int:
        if not self.running:
            logger.debug("Node %d: stopped, broadcast dropped", self.node_id)
            return 0
        self.sent_counter += 1
        return self.transport.broadcast(self.node_id, packet)

    def _unicast(self, peer_id: int, packet: Packet) -> bool:
        if not self.running:
            logger.debug("Node %d: stopped, unicast to %s dropped", self.node_id, peer_id)
            return False
        self.sent_counter += 1
        return self.transport.send_to(self.node_id, peer_id, packet)

    # ------------------------------------------------------------------
    # Election and maintenance
    # ------------------------------------------------------------------

    def initiate_cluster(self):
        """Election timer: claim headship if no higher id is competing"""
        if self.status != NodeStatus.INIT:
            return
        delay = self.config.clustering.election_delay
        if self.degree in (NodeDegree.CH, NodeDegree.CM):
            self._set_status(NodeStatus.UPDATE)
            self.schedule_transmit(self.config.clustering.interval)
        elif self.registry.self_has_max_id():
            self._set_status(NodeStatus.HEAD_ELECTION)
            self.schedule_transmit(delay)
        else:
            self._election_event = self.scheduler.schedule(delay, self.initiate_cluster)

    def update_neighbor_list(self):
        """Periodic maintenance: topology sweep, expiry, role fallout"""
        c = self.config.clustering
        self.acquire_mobility_info()
        prev = (self.record.cluster_id, self.record.degree)

        self.registry.refresh_topology()
        report = self.registry.prune(self.now, c.neighbor_timeout)

        if report.lost_head or report.orphaned:
            logger.info("Node %d lost its cluster head, restarting election", self.node_id)
            self._set_status(NodeStatus.INIT)
        if report.became_head:
            logger.info("Node %d has no neighbors left, declaring itself head", self.node_id)
            self.schedule_transmit(0.0)

        self._notify_if_changed(prev)

        if self._maintenance_event is None or not self._maintenance_event.is_pending:
            self._maintenance_event = self.scheduler.schedule(c.interval, self.update_neighbor_list)

    def _join_cluster(self, head: NodeRecord):
        """Accept a cluster offer and become a member"""
        if self._election_event is not None:
            self._election_event.cancel()
        self.record.attach_to(head.cluster_id, head.ch_address)
        self._set_status(NodeStatus.UPDATE)
        self.schedule_transmit(self.config.clustering.time_window)
        logger.debug("Node %d joined cluster %d", self.node_id, head.cluster_id)

    def _in_range(self, other: NodeRecord) -> bool:
        return distance(self.position, other.position) < self.config.clustering.omni_range

    def _note_neighbor_cluster(self, other: NodeRecord):
        if (self.cluster_id != other.cluster_id
                and other.degree in (NodeDegree.CH, NodeDegree.CM)):
            self.registry.upsert_neighbor_cluster(other.as_cluster_representative(self.now))

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def deliver(self, sender_id: int, packet: Packet):
        """Transport callback: dispatch every message of a packet"""
        prev = (self.record.cluster_id, self.record.degree)
        for message in packet:
            self.recv_counter += 1
            handler = self._handlers.get(type(message))
            if handler is None:
                logger.debug("Node %d: no handler for %r", self.node_id, type(message))
                continue
            handler(sender_id, message)
        self._notify_if_changed(prev)

    def _on_cluster_info(self, sender_id: int, msg: ClusterInfo):
        other = msg.sender.copy()
        other.timestamp = self.now
        if not self._in_range(other):
            return
        self.registry.upsert_neighbor(other)

        if (self.status == NodeStatus.INIT and other.degree == NodeDegree.CH
                and self.degree == NodeDegree.STANDALONE):
            self._join_cluster(other)

        if self.status in (NodeStatus.UPDATE, NodeStatus.HEAD_ELECTION):
            if self.degree in (NodeDegree.CH, NodeDegree.CM):
                if other.cluster_id == self.node_id:
                    self.registry.upsert_member(other)
                elif not self.registry.cluster_members:
                    self._merge_check()
            elif self.degree == NodeDegree.STANDALONE:
                if not self._merge_check():
                    logger.debug("Node %d: no head in sight, becoming head", self.node_id)
                    self.record.declare_head()
                    self._schedule_once(0.0, self.update_neighbors)

        self._note_neighbor_cluster(other)

    def _merge_check(self) -> bool:
        """Attach to the highest-id visible head if it outranks us"""
        potential = self.registry.highest_id_candidate_head()
        if potential is None or potential not in self.registry.neighbors:
            return False
        if self.degree != NodeDegree.STANDALONE and self.node_id >= potential:
            return False
        if self.cluster_id != potential or self.degree != NodeDegree.CM:
            head = self.registry.neighbors[potential]
            logger.debug("Node %d: merging into cluster %d", self.node_id, potential)
            self.record.attach_to(potential, head.ch_address)
        return True

    def _on_initiate_cluster(self, sender_id: int, msg: InitiateCluster):
        head = msg.sender.copy()
        head.timestamp = self.now
        if not self._in_range(head):
            return

        if self.status == NodeStatus.INIT:
            if msg.cluster_id in self.registry.neighbors:
                self.registry.neighbors[msg.cluster_id] = head
                self._join_cluster(head)
            else:
                logger.debug("Node %d: initiate from unknown node %d",
                             self.node_id, msg.cluster_id)
        else:
            logger.debug("Node %d: ignoring further head offers", self.node_id)

        self._note_neighbor_cluster(head)

    def _on_form_cluster(self, sender_id: int, msg: FormCluster):
        other = msg.sender.copy()
        other.timestamp = self.now
        if not self._in_range(other):
            return
        self.registry.upsert_neighbor(other)

        if other.cluster_id not in self.registry.neighbors:
            logger.debug("Node %d: formation from unknown cluster %s",
                         self.node_id, other.cluster_id)
            return
        if self.status in (NodeStatus.INIT, NodeStatus.HEAD_ELECTION):
            self._join_cluster(other)
        elif self.status == NodeStatus.FORMATION:
            logger.debug("Node %d: already forming, offer ignored", self.node_id)

    def _on_neighbor_cluster_info(self, sender_id: int, msg: NeighborClusterInfo):
        head = msg.neighbor_head.copy()
        if (self.degree == NodeDegree.CH and msg.cluster_id == self.node_id
                and head.node_id != self.node_id):
            head.timestamp = self.now
            self.registry.upsert_neighbor_cluster(head)

    def _on_incident_event(self, sender_id: int, msg: IncidentEvent):
        if self.incident_timestamp is not None and self.incident_timestamp == msg.timestamp:
            delay = self.now - msg.timestamp
            self.overall_incident_delay += delay
            self.incident_echoes += 1
            logger.info("Node %d received its incident back, delay %.4fs", self.node_id, delay)

        if self.degree == NodeDegree.CH and self.cluster_id == msg.cluster_id:
            self._broadcast((msg,))
            logger.info("Node %d relayed %s incident to cluster %d",
                        self.node_id, msg.incident_type.value, self.cluster_id)

    # ------------------------------------------------------------------
    # Distribution map exchange
    # ------------------------------------------------------------------

    def update_distro_map(self) -> DistributionMap:
        """Recompute the cluster distribution map from current members"""
        d = self.config.distro_map
        offsets = [(0.0, 0.0)]
        for pos in self.registry.member_positions().values():
            delta = pos - self.position
            offsets.append((delta[0], delta[1]))

        bandwidth = d.fixed_bandwidth if d.bandwidth_method == "fixed" else d.bandwidth_method
        try:
            self.distribution = build_distribution_map(offsets, d.grid_size, d.grid_scale,
                                                       bandwidth)
        except DegenerateGeometryError as e:
            logger.warning("Node %d: degenerate member geometry (%s), using fallback map",
                           self.node_id, e)
            self.distribution = degenerate_map(d.grid_size, d.grid_scale)
        return self.distribution

    def exchange_distro_map(self):
        """Send the map to every neighbouring head, retried until acknowledged"""
        c = self.config.clustering
        p = self.config.propagation
        self._set_status(NodeStatus.EXCHANGE_DISTRO_MAP)
        if self.distribution is None:
            self.update_distro_map()

        payload = self.distribution.frozen()
        delay = 0.0
        for peer_id in sorted(self.registry.neighbor_clusters):
            packet = (DistroMap(cluster_id=self.node_id, sender=self.record.copy(),
                                distribution=payload, seq=self.sent_counter),)
            task = RetransmitTask(self.scheduler, partial(self._unicast, peer_id, packet),
                                  c.minimum_tdma_slot * p.retry_slots,
                                  label=f"distro map {self.node_id}->{peer_id}")
            self.coordinator.distro_map_acks.replace(peer_id, task)
            task.start(delay)
            delay += c.minimum_tdma_slot * (peer_id + self.node_id)

    def _on_distro_map(self, sender_id: int, msg: DistroMap):
        head = msg.sender.copy()
        head.timestamp = self.now
        self.registry.upsert_neighbor_cluster(head)
        self.coordinator.store_distribution_map(msg.cluster_id, msg.distribution, head)
        self._send_ack(sender_id, MessageKind.DISTRO_MAP)

    def _send_ack(self, peer_id: int, kind: MessageKind):
        packet = (Ack(seq=self.sent_counter, cluster_id=self.cluster_id,
                      acknowledged_kind=kind),)
        self._schedule_once(0.0, self._unicast, peer_id, packet)

    def _on_ack(self, sender_id: int, msg: Ack):
        if msg.acknowledged_kind == MessageKind.DISTRO_MAP:
            table = self.coordinator.distro_map_acks
        elif msg.acknowledged_kind == MessageKind.INTER_CLUSTER_PROPAGATION:
            table = self.coordinator.inter_cluster_acks
        else:
            return
        # Tasks are keyed by the peer head, whose cluster id may have changed since
        if not table.acknowledge(sender_id):
            logger.debug("Node %d: ack from unknown peer %d (cluster %s)",
                         self.node_id, sender_id, msg.cluster_id)

    # ------------------------------------------------------------------
    # Propagation decision
    # ------------------------------------------------------------------

    def decide_propagation_param(self):
        """Grace period over: pick a starting node and launch the wavefront"""
        self._set_status(NodeStatus.DECIDE_PROPAGATION_PARAM)
        self.coordinator.distro_map_acks.force_all()

        for cid, head in self.coordinator.neighbor_heads.items():
            if cid in self.registry.neighbor_clusters:
                self.registry.neighbor_clusters[cid] = head.copy()

        starting_id = None
        direction = None
        for nid in sorted(self.registry.cluster_members):
            rec = self.registry.cluster_members[nid]
            if rec.is_starting_node:
                starting_id, direction = nid, rec.base_direction
        if self.record.is_starting_node:
            starting_id, direction = self.node_id, self.record.base_direction

        if starting_id is not None and direction is None:
            logger.warning("Node %d: starting node %d has no base direction",
                           self.node_id, starting_id)
            return

        if starting_id is not None and self.coordinator.begin_wave(starting_id, self.now):
            logger.info("Node %d: wavefront from node %d at %.4f",
                        self.node_id, starting_id, self.propagation.first_start_time)
            self.transmit_propagation_direction(starting_id, direction)
        elif self.propagation.first_start_node_id is not None and self.registry.cluster_members:
            self.schedule_transmit(0.0)

    def transmit_propagation_direction(self, starting_id: int, incoming):
        """
        Forward the wave to neighbouring clusters and schedule the members.

        Args:
            starting_id: Node where the wave enters this cluster
            incoming: Incoming wave velocity
        """
        c = self.config.clustering
        p = self.config.propagation
        state = self.propagation
        self.coordinator.inter_cluster_acks.cancel_all()

        if starting_id == self.node_id:
            start_position = self.position
        elif starting_id in self.registry.cluster_members:
            start_position = self.registry.cluster_members[starting_id].position
        else:
            logger.debug("Node %d: unknown starting node %d", self.node_id, starting_id)
            return

        candidates = self.coordinator.select_candidates(start_position, incoming)
        offsets = self.coordinator.send_offsets(len(candidates))
        retry_interval = c.minimum_tdma_slot * p.retry_slots
        max_attempts = int(p.exchange_grace_period / retry_interval) + 1

        for cand, delay in zip(candidates, offsets):
            packet = (InterClusterPropagation(
                seq=self.sent_counter,
                cluster_id=self.cluster_id,
                source=frozen_vector(start_position),
                destination=frozen_vector(cand.position),
                direction=frozen_vector(cand.direction),
                start_time=state.first_start_time,
            ),)
            task = RetransmitTask(self.scheduler,
                                  partial(self._unicast, cand.cluster_id, packet),
                                  retry_interval,
                                  label=f"offer {self.node_id}->{cand.cluster_id}",
                                  max_attempts=max_attempts)
            self.coordinator.inter_cluster_acks.replace(cand.cluster_id, task)
            task.start(delay)
            logger.debug("Node %d: offer to cluster %d via %s", self.node_id,
                         cand.cluster_id, cand.position[:2])

        state.direction = self.coordinator.combine_directions(incoming, candidates)

        if self.registry.cluster_members:
            self.schedule_transmit(offsets[-1])

        disable = p.disable_starting_node_override
        if starting_id == self.node_id and (not disable or self.record.is_starting_node):
            state.lower_start_time(state.first_start_time, self.now, inclusive=True)
            self.schedule_inter_node_propagation()

    def _on_inter_cluster_propagation(self, sender_id: int, msg: InterClusterPropagation):
        candidate_id = self.find_node_by_position(msg.destination)
        if candidate_id == self.node_id:
            candidate_position = self.position
        else:
            candidate_position = self.registry.cluster_members[candidate_id].position

        if self.coordinator.accept_inter_cluster_offer(
                msg.start_time, msg.source, candidate_id, candidate_position,
                msg.direction, self.now):
            self.transmit_propagation_direction(candidate_id, msg.direction)

        self._send_ack(sender_id, MessageKind.INTER_CLUSTER_PROPAGATION)

    def find_node_by_position(self, position) -> int:
        """Id of self or the member closest to position"""
        target = as_vector(position)
        best_id = self.node_id
        best = float(np.sum((target - self.position) ** 2))
        for nid, pos in self.registry.member_positions().items():
            d = float(np.sum((target - pos) ** 2))
            if d < best:
                best, best_id = d, nid
        return best_id

    # ------------------------------------------------------------------
    # Wave activation
    # ------------------------------------------------------------------

    def _on_intra_cluster_propagation(self, sender_id: int, msg: IntraClusterPropagation):
        if self.cluster_id != msg.cluster_id or self.degree != NodeDegree.CM:
            return
        state = self.propagation
        state.direction = as_vector(msg.direction)

        disable = self.config.propagation.disable_starting_node_override
        if (self.node_id == msg.starting_node_id
                and (not disable or self.record.is_starting_node)
                and self.status in (NodeStatus.EXCHANGE_DISTRO_MAP,
                                    NodeStatus.PROPAGATION_READY)):
            if state.lower_start_time(msg.start_time, self.now, inclusive=True):
                state.first_start_time = msg.start_time
            self.schedule_inter_node_propagation()

    def _on_inter_node_propagation(self, sender_id: int, msg: InterNodePropagation):
        self.acquire_mobility_info()
        if self.coordinator.relax_inter_node(self.position, msg.position, msg.direction,
                                             msg.start_time, self.now):
            self.schedule_inter_node_propagation()

    def schedule_inter_node_propagation(self):
        """(Re)arm the local activation at the current start time"""
        self._set_status(NodeStatus.PROPAGATION_READY)
        state = self.propagation
        if not state.scheduled or self.now > state.start_time:
            return
        if self._propagation_event is not None:
            self._propagation_event.cancel()

        if self.reverse_mode:
            delay = self.config.propagation.reverse_kickoff
        else:
            delay = state.start_time - self.now
        self._propagation_event = self.scheduler.schedule(delay, self.start_node_propagation)

    def start_node_propagation(self):
        """Broadcast this node's wave once, then complete or enter the duty cycle"""
        p = self.config.propagation
        state = self.propagation
        self._set_status(NodeStatus.PROPAGATION_RUNNING)
        self.acquire_mobility_info()
        self._broadcast((InterNodePropagation(
            seq=self.sent_counter,
            cluster_id=self.cluster_id,
            position=frozen_vector(self.position),
            direction=frozen_vector(state.direction),
            start_time=state.start_time,
        ),))

        if not self.reverse_mode:
            self._propagation_event = self.scheduler.schedule(p.running_time,
                                                              self.stop_node_propagation)
        else:
            offset = self.now - state.start_time
            while offset < 0:
                offset += p.reverse_period
            offset += p.reverse_offset
            logger.debug("Node %d: duty cycle starts in %.4fs", self.node_id, offset)
            self._propagation_event = self.scheduler.schedule(offset, self.activate_node)

    def stop_node_propagation(self):
        self._set_status(NodeStatus.PROPAGATION_COMPLETE)

    def activate_node(self):
        self._set_status(NodeStatus.ACTIVE)
        self._propagation_event = self.scheduler.schedule(
            self.config.propagation.active_duration, self.inactivate_node)

    def inactivate_node(self):
        self._set_status(NodeStatus.PROPAGATION_COMPLETE)
        self._propagation_event = self.scheduler.schedule(
            self.config.propagation.inactive_duration, self.activate_node)

    # ------------------------------------------------------------------
    # Incidents
    # ------------------------------------------------------------------

    def send_incident(self, incident_type: IncidentType = IncidentType.EMERGENCY):
        """
        Raise an incident.

        Heads and standalone nodes broadcast it; members hand it to their
        head, which relays it to the whole cluster.
        """
        self.incident_timestamp = self.now
        packet = (IncidentEvent(timestamp=self.now, cluster_id=self.cluster_id,
                                incident_type=incident_type),)
        if self.degree in (NodeDegree.CH, NodeDegree.STANDALONE):
            self._broadcast(packet)
        else:
            self._unicast(self.record.ch_address, packet)
            self.incident_counter += 1
        logger.info("Node %d raised %s incident", self.node_id, incident_type.value)

    def schedule_incident(self, delay: float):
        self._incident_event = self.scheduler.schedule(max(0.0, delay), self._periodic_incident)

    def _periodic_incident(self):
        self.send_incident()
        self.schedule_incident(self.config.clustering.incident_window)

    # ------------------------------------------------------------------
    # Status tracking and reporting
    # ------------------------------------------------------------------

    def _set_status(self, status: NodeStatus):
        if status != self.status:
            logger.debug("Node %d: %s -> %s", self.node_id, self.status.value, status.value)
        self.status = status

    def _notify_if_changed(self, prev):
        if prev == (self.record.cluster_id, self.record.degree):
            return
        self.changes_counter += 1
        logger.debug("Node %d: cluster %s/%s -> %s/%s", self.node_id,
                     prev[0], prev[1].value, self.cluster_id, self.degree.value)
        for listener in self._listeners:
            listener(self)

    def statistics(self) -> Dict[str, object]:
        state = self.propagation
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "degree": self.degree.value,
            "cluster_id": self.cluster_id,
            "neighbors": len(self.registry.neighbors),
            "cluster_members": len(self.registry.cluster_members),
            "neighbor_clusters": len(self.registry.neighbor_clusters),
            "sent": self.sent_counter,
            "received": self.recv_counter,
            "formation_messages": self.formation_counter,
            "cluster_changes": self.changes_counter,
            "incidents": self.incident_counter,
            "incident_delay": self.overall_incident_delay,
            "start_time": state.start_time,
            "first_start_time": state.first_start_time,
        }

    def status_report(self) -> str:
        """Human-readable dump of the node and its tables"""
        lines = [
            f"[StatusReport] t={self.now:.3f}s node {self.node_id} is {self.degree.value} "
            f"in cluster {self.cluster_id} ({self.status.value})",
            f"  position: {np.round(self.position, 2).tolist()}",
            f"  last update: {self.record.timestamp:.3f}s  neighbors: {len(self.registry.neighbors)}",
        ]
        for title, table in (("neighbors", self.registry.neighbors),
                             ("cluster members", self.registry.cluster_members),
                             ("neighbor clusters", self.registry.neighbor_clusters)):
            lines.append(f"  --- {title} ---")
            for nid in sorted(table):
                rec = table[nid]
                lines.append(
                    f"   * {nid}: cluster={rec.cluster_id} degree={rec.degree.value} "
                    f"pos={np.round(rec.position, 2).tolist()} ts={rec.timestamp:.3f}s")
        state = self.propagation
        if math.isfinite(state.start_time):
            lines.append(f"  wavefront start: {state.start_time:.4f}s")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (f"ClusterNode(id={self.node_id}, {self.degree.value}, "
                f"cluster={self.cluster_id}, {self.status.value})")
