"""
Synchronization Module
======================

Lockstep updates for teammates training concurrently, one thread each.

A joint DIAL round:
    1. Propose: every participant runs its actor and publishes the
       message bits it would have sent.
    2. Barrier.
    3. Every participant places teammate messages into the heard-message
       slots of its own states, evaluates its actor loss and publishes
       d loss / d message back to each sender.
    4. Barrier.
    5. Every participant adds the gradients it received to its own message
       outputs and finishes a normal actor-critic update.

Heard-message slots are the last message_size * num_teammates features of
the newest frame of a state stack, teammates ordered by participant id.

Author: MARL Soccer Team
"""

import threading
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import torch

from .replay_memory import InsufficientMemoryError, Transition


class SyncGroup:
    """
    Rendezvous point and channels for a team of participants.

    The barrier has no timeout: a participant that never arrives stalls
    the whole group.

    Attributes:
        size: Number of participants
        leader: Participant id that samples shared minibatches

    Example:
        >>> group = SyncGroup(2)
        >>> # thread 0:  agent_a.synchronized_update(group, 0)
        >>> # thread 1:  agent_b.synchronized_update(group, 1)
    """

    def __init__(self, size: int, barrier=None, leader: int = 0):
        if size < 1:
            raise ValueError(f"Group size must be >= 1, got {size}")
        if not 0 <= leader < size:
            raise ValueError(f"Leader {leader} is not a participant")
        self.size = size
        self.leader = leader
        self._barrier = barrier if barrier is not None else threading.Barrier(size)
        self._slots: List[Any] = [None] * size
        self._messages: Dict[int, torch.Tensor] = {}
        self._gradients: Dict[int, Dict[int, torch.Tensor]] = {}

    def _check(self, participant: int):
        if not 0 <= participant < self.size:
            raise ValueError(f"Participant {participant} not in group of {self.size}")

    def wait(self):
        self._barrier.wait()

    def abort(self):
        """Release waiting participants with BrokenBarrierError."""
        if hasattr(self._barrier, "abort"):
            self._barrier.abort()

    def teammates(self, participant: int) -> List[int]:
        """Other participant ids in heard-slot order."""
        return [j for j in range(self.size) if j != participant]

    def all_gather(self, participant: int, value: Any) -> List[Any]:
        """Every participant contributes a value and receives all of them."""
        self._check(participant)
        self._slots[participant] = value
        self.wait()
        values = list(self._slots)
        self.wait()
        return values

    def broadcast(self, participant: int, value: Any = None) -> Any:
        """Return the leader's value to every participant."""
        return self.all_gather(participant, value)[self.leader]

    def exchange_messages(
        self,
        participant: int,
        messages: torch.Tensor
    ) -> Dict[int, torch.Tensor]:
        """Publish proposed messages, wait, then read the teammates' proposals."""
        self._check(participant)
        self._messages[participant] = messages
        self.wait()
        return {j: self._messages[j] for j in self.teammates(participant)}

    def exchange_gradients(
        self,
        participant: int,
        gradients: Dict[int, torch.Tensor]
    ) -> Dict[int, torch.Tensor]:
        """
        Publish gradients addressed to each sender, wait, then collect the
        gradients addressed to this participant, keyed by their source.
        """
        self._check(participant)
        self._gradients[participant] = dict(gradients)
        self.wait()
        received = {}
        for j in self.teammates(participant):
            grad = self._gradients.get(j, {}).get(participant)
            if grad is not None:
                received[j] = grad
        return received


# =============================================================================
# UPDATE PROTOCOLS
# =============================================================================

def _check_participant(agent, group: SyncGroup):
    if agent.memory_shared:
        raise ValueError(
            "Synchronized updates need per-agent replay memories, "
            "but this agent's memory is shared"
        )
    if agent.message_size and agent.num_teammates != group.size - 1:
        raise ValueError(
            f"Agent hears {agent.num_teammates} teammates but the group has "
            f"{group.size - 1}"
        )


def shared_indices(agent, group: SyncGroup, participant: int) -> np.ndarray:
    """
    Agree on one set of minibatch indices across the group.

    Indices are aligned on the newest entries, so memories that filled in
    lockstep refer to the same time steps even if their lengths differ.
    """
    sizes = group.all_gather(participant, len(agent.memory))
    window = min(sizes)
    if window < agent.minibatch_size:
        raise InsufficientMemoryError(
            f"Smallest teammate memory holds {window} transitions, "
            f"need {agent.minibatch_size}"
        )
    proposal = None
    if participant == group.leader:
        proposal = agent.rng.integers(0, window, size=agent.minibatch_size)
    offsets = np.asarray(group.broadcast(participant, proposal))
    return len(agent.memory) - window + offsets


def exchange_update(
    agent,
    group: SyncGroup,
    participant: int,
    batch: Sequence[Transition],
    prev_states: np.ndarray,
    heard_valid: np.ndarray
) -> Dict[str, float]:
    """
    One joint round over a batch.

    Args:
        batch: Labeled transitions to train on
        prev_states: State stacks the messages heard in batch were sent from
        heard_valid: Whether row k actually heard the message from prev_states[k]
    """
    states_np = np.stack([t.state for t in batch])
    task_ids = np.array([t.task_id for t in batch], dtype=np.int64)
    actions_np = np.stack([t.actor_output for t in batch])
    targets_np = np.array([t.target for t in batch], dtype=np.float32)

    critic_loss = agent.critic_step(states_np, task_ids, actions_np, targets_np)

    M = agent.message_size
    teammates = group.teammates(participant)
    states = agent.as_tensor(states_np)
    prev = agent.as_tensor(prev_states)
    tasks = torch.as_tensor(task_ids, device=agent.device)

    # Propose
    proposal = agent.actor(prev, tasks)
    my_messages = proposal[:, agent.action_space.message_slice]
    heard = group.exchange_messages(participant, my_messages.detach())

    # Substitute teammate messages as differentiable leaves
    newest = states[:, -1, :]
    base = agent.state_size - M * len(teammates)
    valid = torch.as_tensor(np.asarray(heard_valid, dtype=bool), device=agent.device).unsqueeze(-1)
    columns = [newest[:, :base]]
    leaves = []
    for slot, j in enumerate(teammates if M else []):
        leaf = heard[j].detach().clone().to(agent.device).requires_grad_(True)
        leaves.append(leaf)
        stored = newest[:, base + slot * M: base + (slot + 1) * M]
        columns.append(torch.where(valid, leaf, stored))
    newest_heard = torch.cat(columns, dim=-1)
    states_heard = torch.cat([states[:, :-1, :], newest_heard.unsqueeze(1)], dim=1)

    actor_out = agent.actor(states_heard, tasks)
    q = agent.critic(states_heard, tasks, actor_out)
    actor_loss = -q.mean()
    grads = torch.autograd.grad(actor_loss, leaves + [actor_out], retain_graph=True)

    outgoing = {j: g.detach() for j, g in zip(teammates, grads[:-1])}
    received = group.exchange_gradients(participant, outgoing)

    # Inject teammates' gradients into our own message outputs
    output_grad = agent.bound_gradients(actor_out.detach(), grads[-1])
    outputs = [actor_out]
    output_grads = [output_grad]
    if M and received:
        outputs.append(my_messages)
        output_grads.append(torch.stack(list(received.values())).sum(dim=0))
    agent.actor.backward(outputs, output_grads)
    agent.actor.update()
    agent.soft_update_targets()

    actor_loss = float(actor_loss.item())
    agent.record_losses(critic_loss=critic_loss, actor_loss=actor_loss)
    return {
        "critic_loss": critic_loss,
        "actor_loss": actor_loss,
        "avg_q": -actor_loss,
        "messages_received": float(len(received))
    }


def synchronized_update(agent, group: SyncGroup, participant: int) -> Dict[str, float]:
    """
    Joint update on a minibatch sampled by the group leader.

    Messages arrive one step late: the message a teammate sent at index k-1
    is what was heard at index k, provided both steps lie in one episode.
    """
    _check_participant(agent, group)
    indices = shared_indices(agent, group, participant)
    batch = agent.memory.get(indices)

    prev_states = []
    heard_valid = []
    for idx, t in zip(indices, batch):
        prev = agent.memory[int(idx) - 1] if idx >= 1 else None
        valid = prev is not None and not prev.terminal
        prev_states.append(prev.state if prev is not None else t.state)
        heard_valid.append(valid)

    return exchange_update(
        agent, group, participant, batch,
        np.stack(prev_states), np.array(heard_valid)
    )


def dial_update(
    agent,
    group: SyncGroup,
    participant: int,
    episode: Sequence[Transition]
) -> Dict[str, float]:
    """
    Joint update over one full episode in temporal order.

    Episodes are truncated to the shortest one in the group.
    """
    _check_participant(agent, group)
    lengths = group.all_gather(participant, len(episode))
    length = min(lengths)
    if length == 0:
        return {}
    episode = list(episode[:length])

    prev_states = np.stack([episode[max(k - 1, 0)].state for k in range(length)])
    heard_valid = np.arange(length) >= 1
    return exchange_update(agent, group, participant, episode, prev_states, heard_valid)


def approx_synchronized_update(
    agent,
    group: SyncGroup,
    participant: int
) -> Dict[str, float]:
    """Shared minibatch indices, local losses only, no message exchange."""
    _check_participant(agent, group)
    indices = shared_indices(agent, group, participant)
    return agent.update_on_batch(agent.memory.get(indices))
