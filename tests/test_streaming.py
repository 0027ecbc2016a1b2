"""
Tests for the Streaming Transport: disconnects, resume and replay.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.core.errors import ErrorCode, GenerationError
from app.generation.events import EventType, Sequencer, StreamEvent
from app.generation.orchestrator import RefinementOrchestrator
from app.generation.streaming import StreamingTransport
from app.models.generation_session import SessionStatus
from tests.fakes import collect, html_doc

PROMPT = "A landing page for a specialty coffee roaster"


async def start(service, account, project):
    return await service.start_generation(account.id, account.tier, project.id, PROMPT)


async def read_until(events, event_type):
    """Read until the first event of `event_type`, then drop the connection."""
    received = []
    async for event in events:
        received.append(event)
        if event.type == event_type:
            break
    await events.aclose()
    return received


class TestStreamEvent:
    def test_to_sse(self):
        event = StreamEvent(seq=7, type=EventType.CHUNK, pass_number=2, data={"text": "<h1>"})

        assert event.to_sse() == (
            'id: 7\nevent: chunk\ndata: {"seq": 7, "type": "chunk", "pass": 2, "text": "<h1>"}\n\n'
        )

    def test_terminal_types(self):
        assert StreamEvent(1, EventType.COMPLETE).is_terminal is True
        assert StreamEvent(1, EventType.SNAPSHOT).is_terminal is False

    def test_sequencer(self):
        seq = Sequencer(5)

        assert seq.delivered == 4
        assert seq.event(EventType.PASS_STARTED, 1).seq == 5
        assert seq.next() == 6


class TestDisconnectAndResume:
    @pytest.mark.asyncio
    async def test_disconnect_leaves_session_resumable(
        self, service, transport, make_account, make_project, repository, credits, locks
    ):
        account = make_account(tier="ULTIMATE", balance=10)
        project = make_project(account)
        started = await start(service, account, project)

        received = await read_until(transport.open(started.session_id), EventType.PASS_COMPLETE)

        assert received[-1].seq == 4
        record = repository.load(started.session_id)
        assert record.status == SessionStatus.INTERRUPTED.value
        assert record.passes_completed == 1
        assert record.last_seq == 4
        assert record.resume_window_open() is True
        assert transport.can_continue(record) is True
        assert locks.is_locked(str(project.id)) is False
        # Interrupted sessions keep their charge
        assert credits.get_balance(account.id) == 6

    @pytest.mark.asyncio
    async def test_resume_sends_snapshot_then_next_pass(
        self, service, transport, make_account, make_project, repository, provider
    ):
        account = make_account(tier="ULTIMATE", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        await read_until(transport.open(started.session_id), EventType.PASS_COMPLETE)

        # The client saw up to the last chunk of pass 1, not the pass_complete
        resumed = await collect(transport.resume(started.session_id, cursor=3))

        assert resumed[0].type == EventType.SNAPSHOT
        assert resumed[0].seq == 4
        assert resumed[0].data["html"] == html_doc("pass 1")
        assert resumed[1].type == EventType.PASS_STARTED
        assert resumed[1].pass_number == 2
        assert not [e for e in resumed if e.type == EventType.CHUNK and e.pass_number == 1]
        assert resumed[-1].type == EventType.COMPLETE

        seqs = [e.seq for e in resumed]
        assert seqs == sorted(set(seqs))
        assert seqs[0] == 4 and seqs[1] == 5

        record = repository.load(started.session_id)
        assert record.status == SessionStatus.COMPLETE.value
        assert record.passes_completed == 3
        # Pass 2 refined the committed pass 1 document
        assert provider.stream_calls[1]["messages"][0]["content"] == html_doc("pass 1")

    @pytest.mark.asyncio
    async def test_stored_cursor_after_pass_complete_skips_snapshot(
        self, service, transport, make_account, make_project, repository
    ):
        account = make_account(tier="ULTIMATE", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        await read_until(transport.open(started.session_id), EventType.PASS_COMPLETE)
        stored = repository.load(started.session_id)

        # The stored cursor is the seq of pass 1's pass_complete. A client at
        # that cursor received every chunk of pass 1, so it already holds the
        # document and the snapshot would only repeat it.
        assert stored.last_seq == stored.last_snapshot.seq == 4
        resumed = await collect(transport.resume(started.session_id, cursor=stored.last_seq))

        assert resumed[0].type == EventType.PASS_STARTED
        assert resumed[0].seq == 5
        assert EventType.SNAPSHOT not in [e.type for e in resumed]

    @pytest.mark.asyncio
    async def test_disconnect_mid_pass_drops_partial_output(
        self, service, transport, make_account, make_project, repository, projects
    ):
        account = make_account(tier="ENHANCED", balance=10)
        project = make_project(account)
        started = await start(service, account, project)

        received = await read_until(transport.open(started.session_id), EventType.CHUNK)

        record = repository.load(started.session_id)
        assert record.status == SessionStatus.INTERRUPTED.value
        assert record.passes_completed == 0
        assert record.last_seq == received[-1].seq
        assert projects.get(project.id, account.id).html is None

        resumed = await collect(transport.resume(started.session_id, cursor=received[-1].seq))

        assert resumed[0].type == EventType.PASS_STARTED
        assert resumed[0].pass_number == 1
        assert resumed[0].seq == received[-1].seq + 1
        assert resumed[-1].type == EventType.COMPLETE

    @pytest.mark.asyncio
    async def test_expired_resume_window(
        self, service, transport, make_account, make_project, repository, credits
    ):
        account = make_account(tier="ENHANCED", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        await read_until(transport.open(started.session_id), EventType.PASS_COMPLETE)
        repository.update(
            started.session_id, resume_deadline=datetime.now(timezone.utc) - timedelta(seconds=1)
        )

        resumed = await collect(transport.resume(started.session_id, cursor=4))

        assert [e.type for e in resumed] == [EventType.INTERRUPTED]
        assert resumed[0].seq == 5
        assert resumed[0].data["error"]["code"] == ErrorCode.STREAM_INTERRUPTED.value
        assert repository.load(started.session_id).terminal_seq == 5
        assert credits.get_balance(account.id) == 8

        # The terminal event is not sent twice
        assert await collect(transport.resume(started.session_id, cursor=5)) == []

class TestOpenDeadline:
    @pytest.mark.asyncio
    async def test_unopened_session_fails_and_refunds(
        self, service, transport, make_account, make_project, repository, credits, locks, provider
    ):
        account = make_account(tier="ENHANCED", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        assert credits.get_balance(account.id) == 8
        repository.update(
            started.session_id, open_deadline=datetime.now(timezone.utc) - timedelta(seconds=1)
        )

        events = await collect(transport.open(started.session_id))

        assert [(e.type, e.seq) for e in events] == [(EventType.FAILED, 1)]
        assert events[0].data["error"]["code"] == ErrorCode.SESSION_EXPIRED.value
        assert events[0].data["refunded"] is True
        record = repository.load(started.session_id)
        assert record.status == SessionStatus.FAILED.value
        assert record.refunded is True
        assert credits.get_balance(account.id) == 10
        assert locks.is_locked(str(project.id)) is False
        assert provider.stream_calls == []

        # Reading again replays the same event and refunds nothing more
        again = await collect(transport.open(started.session_id))
        assert [(e.type, e.seq) for e in again] == [(EventType.FAILED, 1)]
        assert credits.get_balance(account.id) == 10

    @pytest.mark.asyncio
    async def test_session_opened_in_time_runs(self, service, transport, make_account, make_project, repository):
        account = make_account()
        project = make_project(account)
        started = await start(service, account, project)

        record = repository.load(started.session_id)
        assert record.open_deadline is not None
        assert record.open_window_expired() is False

        events = await collect(transport.open(started.session_id))
        assert events[-1].type == EventType.COMPLETE


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_chunks_refresh_the_lock(
        self, service, transport, make_account, make_project, locks, lock_clock
    ):
        account = make_account(tier="ENHANCED", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        events = transport.open(started.session_id)

        assert (await events.__anext__()).type == EventType.PASS_STARTED
        lock_clock.now += 200
        assert (await events.__anext__()).type == EventType.CHUNK
        lock_clock.now += 200

        # 400s after pass_started, past the 300s TTL it set
        assert locks.holder(str(project.id)) == str(started.session_id)
        with pytest.raises(GenerationError) as exc:
            await start(service, account, project)
        assert exc.value.code == ErrorCode.GENERATION_IN_PROGRESS

        await events.aclose()

    @pytest.mark.asyncio
    async def test_running_session_blocks_project_after_lock_expiry(
        self, service, transport, make_account, make_project, locks, lock_clock, credits
    ):
        account = make_account(tier="ENHANCED", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        events = transport.open(started.session_id)
        assert (await events.__anext__()).type == EventType.PASS_STARTED

        # No chunk arrives for longer than the TTL
        lock_clock.now += 301
        assert locks.is_locked(str(project.id)) is False

        with pytest.raises(GenerationError) as exc:
            await start(service, account, project)
        assert exc.value.code == ErrorCode.GENERATION_IN_PROGRESS
        assert credits.get_balance(account.id) == 8
        # The rejected request does not keep the lock
        assert locks.is_locked(str(project.id)) is False

        await events.aclose()

    @pytest.mark.asyncio
    async def test_heartbeat_touches_the_session_row(
        self, service, transport, make_account, make_project, repository, lock_clock
    ):
        account = make_account()
        project = make_project(account)
        started = await start(service, account, project)
        events = transport.open(started.session_id)
        pass_started = await events.__anext__()

        lock_clock.now += 150
        await events.__anext__()

        # Written before the chunk went out, so it records the pass_started seq
        assert repository.load(started.session_id).last_seq == pass_started.seq

        await events.aclose()



class TestReplay:
    @pytest.mark.asyncio
    async def test_replay_finished_session(self, service, transport, make_account, make_project):
        account = make_account(tier="ENHANCED", balance=10)
        project = make_project(account)
        started = await start(service, account, project)
        events = await collect(transport.open(started.session_id))

        replay = await collect(transport.resume(started.session_id, cursor=0))

        assert [e.type for e in replay] == [EventType.SNAPSHOT, EventType.COMPLETE]
        assert replay[0].data["html"] == html_doc("pass 2")
        assert replay[-1].seq == events[-1].seq
        assert await collect(transport.resume(started.session_id, cursor=events[-1].seq)) == []

    @pytest.mark.asyncio
    async def test_open_on_finished_session_replays(self, service, transport, make_account, make_project):
        account = make_account()
        project = make_project(account)
        started = await start(service, account, project)
        await collect(transport.open(started.session_id))

        replay = await collect(transport.open(started.session_id))

        assert replay[-1].type == EventType.COMPLETE

    @pytest.mark.asyncio
    async def test_cancelled_pending_session(self, service, transport, make_account, make_project):
        account = make_account()
        project = make_project(account)
        started = await start(service, account, project)
        service.cancel(started.session_id, account.id)

        events = await collect(transport.open(started.session_id))

        assert [(e.type, e.seq) for e in events] == [(EventType.INTERRUPTED, 1)]


class TestReaders:
    @pytest.mark.asyncio
    async def test_second_reader_rejected(self, service, transport, make_account, make_project, repository):
        account = make_account()
        project = make_project(account)
        started = await start(service, account, project)

        events = transport.open(started.session_id)
        first = await events.__anext__()
        assert first.type == EventType.PASS_STARTED

        record = repository.load(started.session_id)
        with pytest.raises(GenerationError) as exc:
            transport.check_readable(record)
        assert exc.value.code == ErrorCode.GENERATION_IN_PROGRESS

        with pytest.raises(GenerationError):
            await collect(transport.resume(started.session_id, cursor=0))

        await events.aclose()

    @pytest.mark.asyncio
    async def test_orphaned_live_session_is_picked_up(
        self, service, make_account, make_project, repository, projects, credits, locks, provider
    ):
        """A session left STREAMING by a dead process resumes from stored state."""
        account = make_account()
        project = make_project(account)
        started = await start(service, account, project)
        repository.transition(started.session_id, [SessionStatus.PENDING.value], status=SessionStatus.STREAMING.value)

        # Fresh orchestrator: nothing is running in this "process"
        fresh = RefinementOrchestrator(
            repository=repository, projects=projects, credits=credits, locks=locks, provider=provider
        )
        transport = StreamingTransport(orchestrator=fresh, repository=repository)

        assert transport.can_continue(repository.load(started.session_id)) is True
        events = await collect(transport.resume(started.session_id, cursor=0))

        assert events[0].type == EventType.PASS_STARTED
        assert events[-1].type == EventType.COMPLETE

    @pytest.mark.asyncio
    async def test_unknown_session(self, transport, db):
        with pytest.raises(GenerationError) as exc:
            await collect(transport.open(uuid4()))
        assert exc.value.code == ErrorCode.SESSION_NOT_FOUND
