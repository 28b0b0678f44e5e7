"""
Unit tests for the realtime socket client and channels.

A scripted in-memory websocket stands in for the server.
"""
import asyncio
import json

import pytest

from slide_sync.models import ChannelStatus, ConnectionConfig
from slide_sync.realtime import RealtimeClient
from slide_sync.services.presence_tracker import PresenceTracker

_CLOSE = object()


class FakeWebSocket:
    """Websocket double: records sent frames, yields queued inbound frames."""

    def __init__(self):
        self.sent = []
        self.inbound = asyncio.Queue()
        self.closed = False

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def close(self):
        self.closed = True
        self.inbound.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.inbound.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    def push(self, topic, event, payload, ref=None):
        self.inbound.put_nowait(json.dumps({'topic': topic, 'event': event, 'payload': payload, 'ref': ref}))

    def frames(self, event):
        return [frame for frame in self.sent if frame['event'] == event]


@pytest.fixture
def ws():
    return FakeWebSocket()


@pytest.fixture
def make_client(ws):
    urls = []

    def _make(**kwargs):
        async def connect(url):
            urls.append(url)
            return ws

        client = RealtimeClient('wss://test.supabase.co/realtime/v1/websocket', 'anon-key', connect=connect, **kwargs)
        client.urls = urls
        return client
    return _make


async def subscribed_channel(client, ws, topic='viewer:p1', config=None):
    statuses = []
    channel = client.channel(topic, config)
    await channel.subscribe(statuses.append)
    ws.push(channel.wire_topic, 'phx_reply', {'status': 'ok', 'response': {}}, ref=channel.join_ref)
    await asyncio.sleep(0.01)
    return channel, statuses


class TestConnection:

    def test_endpoint_carries_key_and_version(self, make_client):
        client = make_client()

        assert client.endpoint == 'wss://test.supabase.co/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0'

    @pytest.mark.asyncio
    async def test_connect_failure_reports_channel_error(self):
        async def refuse(url):
            raise OSError('connection refused')

        client = RealtimeClient('wss://test.supabase.co/realtime/v1/websocket', 'anon-key', connect=refuse)
        statuses = []

        await client.channel('viewer:p1').subscribe(statuses.append)

        assert statuses == [ChannelStatus.CHANNEL_ERROR]
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_channels_share_one_socket(self, make_client, ws):
        client = make_client()

        await subscribed_channel(client, ws, 'viewer:p1')
        await subscribed_channel(client, ws, 'presence:p1')

        assert len(client.urls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_heartbeat(self, make_client, ws):
        client = make_client(heartbeat_interval=0.01)
        await subscribed_channel(client, ws)

        await asyncio.sleep(0.05)

        heartbeats = ws.frames('heartbeat')
        assert heartbeats
        assert heartbeats[0]['topic'] == 'phoenix'
        await client.close()


class TestJoin:

    @pytest.mark.asyncio
    async def test_join_frame_announces_bindings(self, make_client, ws):
        client = make_client()
        channel = client.channel('viewer:p1', {'presence': {'key': ''}})
        channel.on_postgres_changes('UPDATE', 'public', 'presentations', 'id=eq.p1', lambda change: None)

        await channel.subscribe()

        join = ws.frames('phx_join')[0]
        assert join['topic'] == 'realtime:viewer:p1'
        assert join['ref'] == channel.join_ref
        assert join['payload']['config']['postgres_changes'] == [
            {'event': 'UPDATE', 'schema': 'public', 'table': 'presentations', 'filter': 'id=eq.p1'}
        ]
        assert join['payload']['access_token'] == 'anon-key'
        await client.close()

    @pytest.mark.asyncio
    async def test_ok_reply_subscribes(self, make_client, ws):
        client = make_client()

        channel, statuses = await subscribed_channel(client, ws)

        assert statuses == [ChannelStatus.SUBSCRIBED]
        assert channel.joined
        await client.close()

    @pytest.mark.asyncio
    async def test_error_reply(self, make_client, ws):
        client = make_client()
        statuses = []
        channel = client.channel('viewer:p1')
        await channel.subscribe(statuses.append)

        ws.push(channel.wire_topic, 'phx_reply', {'status': 'error', 'response': {'reason': 'denied'}}, ref=channel.join_ref)
        await asyncio.sleep(0.01)

        assert statuses == [ChannelStatus.CHANNEL_ERROR]
        assert channel.closed
        await client.close()

    @pytest.mark.asyncio
    async def test_reply_with_other_ref_is_ignored(self, make_client, ws):
        client = make_client(join_timeout=0.03)
        statuses = []
        channel = client.channel('viewer:p1')
        await channel.subscribe(statuses.append)

        ws.push(channel.wire_topic, 'phx_reply', {'status': 'ok'}, ref='999')
        await asyncio.sleep(0.06)

        assert statuses == [ChannelStatus.TIMED_OUT]
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_after_join(self, make_client, ws):
        client = make_client()
        channel, statuses = await subscribed_channel(client, ws)

        ws.push(channel.wire_topic, 'phx_error', {})
        await asyncio.sleep(0.01)

        assert statuses == [ChannelStatus.SUBSCRIBED, ChannelStatus.CHANNEL_ERROR]
        await client.close()

    @pytest.mark.asyncio
    async def test_socket_drop_reports_closed(self, make_client, ws):
        client = make_client()
        _, statuses = await subscribed_channel(client, ws)

        ws.inbound.put_nowait(_CLOSE)
        await asyncio.sleep(0.01)

        assert statuses == [ChannelStatus.SUBSCRIBED, ChannelStatus.CLOSED]
        assert not client.is_connected


class TestInboundEvents:

    @pytest.mark.asyncio
    async def test_postgres_change_reaches_matching_binding(self, make_client, ws):
        client = make_client()
        updates, inserts = [], []
        channel = client.channel('viewer:p1')
        channel.on_postgres_changes('UPDATE', 'public', 'presentations', 'id=eq.p1', updates.append)
        channel.on_postgres_changes('INSERT', 'public', 'presentations', None, inserts.append)
        await channel.subscribe()

        ws.push(channel.wire_topic, 'postgres_changes', {
            'data': {
                'type': 'UPDATE',
                'schema': 'public',
                'table': 'presentations',
                'record': {'id': 'p1', 'current_slide_index': 4, 'is_live': True},
                'old_record': {'id': 'p1'},
            }
        })
        await asyncio.sleep(0.01)

        assert inserts == []
        assert updates[0]['eventType'] == 'UPDATE'
        assert updates[0]['new']['current_slide_index'] == 4
        await client.close()

    @pytest.mark.asyncio
    async def test_presence_state_and_diff(self, make_client, ws):
        client = make_client()
        syncs = []
        channel = client.channel('presence:p1', {'presence': {'key': 'viewer_abc1234'}})
        channel.on_presence_sync(lambda: syncs.append(channel.presence_state()))
        await channel.subscribe()

        ws.push(channel.wire_topic, 'presence_state', {
            'presenter': {'metas': [{'type': 'presenter', 'phx_ref': 'a'}]},
        })
        ws.push(channel.wire_topic, 'presence_diff', {
            'joins': {'viewer_abc1234': {'metas': [{'type': 'viewer', 'phx_ref': 'b'}]}},
            'leaves': {},
        })
        ws.push(channel.wire_topic, 'presence_diff', {
            'joins': {},
            'leaves': {'presenter': {'metas': [{'type': 'presenter', 'phx_ref': 'a'}]}},
        })
        await asyncio.sleep(0.01)

        assert len(syncs) == 3
        assert set(syncs[1]) == {'presenter', 'viewer_abc1234'}
        assert channel.presence_state() == {'viewer_abc1234': [{'type': 'viewer', 'phx_ref': 'b'}]}
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self, make_client, ws):
        client = make_client()
        _, statuses = await subscribed_channel(client, ws)

        ws.inbound.put_nowait('not json')
        await asyncio.sleep(0.01)

        assert client.is_connected
        assert statuses == [ChannelStatus.SUBSCRIBED]
        await client.close()


class TestOutbound:

    @pytest.mark.asyncio
    async def test_track_after_join(self, make_client, ws):
        client = make_client()
        channel, _ = await subscribed_channel(client, ws, 'presence:p1')

        await channel.track({'type': 'viewer'})

        frame = ws.frames('presence')[0]
        assert frame['payload'] == {'type': 'presence', 'event': 'track', 'payload': {'type': 'viewer'}}
        await client.close()

    @pytest.mark.asyncio
    async def test_track_before_join_is_skipped(self, make_client, ws):
        client = make_client()
        channel = client.channel('presence:p1')

        await channel.track({'type': 'viewer'})

        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_removing_last_channel_leaves_and_closes(self, make_client, ws):
        client = make_client()
        channel, statuses = await subscribed_channel(client, ws)

        await client.remove_channel(channel)

        assert ws.frames('phx_leave')[0]['topic'] == 'realtime:viewer:p1'
        assert ws.closed
        assert client.channels == []
        assert not client.is_connected
        assert statuses == [ChannelStatus.SUBSCRIBED]

    @pytest.mark.asyncio
    async def test_channel_removed_while_connecting_sends_no_join(self):
        sockets = []
        opened = asyncio.Event()

        async def slow_connect(url):
            await opened.wait()
            sockets.append(FakeWebSocket())
            return sockets[-1]

        client = RealtimeClient('wss://test.supabase.co/realtime/v1/websocket', 'anon-key', connect=slow_connect)
        channel = client.channel('viewer:p1')
        statuses = []
        subscribing = asyncio.create_task(channel.subscribe(statuses.append))
        await asyncio.sleep(0.01)

        await client.remove_channel(channel)
        opened.set()
        await subscribing

        assert sockets[0].frames('phx_join') == []
        assert sockets[0].closed
        assert not client.is_connected
        assert statuses == []


class TestPresenceOverSocket:
    """Presence tracking across a dropped socket."""

    @pytest.mark.asyncio
    async def test_presence_rejoins_and_tracks_on_reopened_socket(self, wait_until):
        sockets = []

        async def connect(url):
            sockets.append(FakeWebSocket())
            return sockets[-1]

        def join_frame(ws, topic):
            frames = [f for f in ws.frames('phx_join') if f['topic'] == f'realtime:{topic}']
            return frames[-1] if frames else None

        def reply_ok(ws, frame):
            ws.push(frame['topic'], 'phx_reply', {'status': 'ok', 'response': {}}, ref=frame['ref'])

        client = RealtimeClient('wss://test.supabase.co/realtime/v1/websocket', 'anon-key', connect=connect)
        tracker = PresenceTracker(
            'p1', client, member_key='viewer_abc1234',
            config=ConnectionConfig(backoff_base_delay=0.05)
        )
        await tracker.start()
        reply_ok(sockets[0], join_frame(sockets[0], 'presence:p1'))
        await wait_until(lambda: sockets[0].frames('presence'))

        sockets[0].inbound.put_nowait(_CLOSE)
        await wait_until(lambda: not client.is_connected)
        viewer = client.channel('viewer:p1')
        await viewer.subscribe()
        assert len(sockets) == 2

        await wait_until(lambda: join_frame(sockets[1], 'presence:p1') is not None)
        reply_ok(sockets[1], join_frame(sockets[1], 'presence:p1'))
        await wait_until(lambda: sockets[1].frames('presence'))

        assert sockets[1].frames('presence')[0]['payload']['payload'] == {'type': 'viewer'}
        assert join_frame(sockets[1], 'presence:p1')['payload']['config']['presence'] == {'key': 'viewer_abc1234'}
        assert len(sockets) == 2
        assert client.is_connected
        await tracker.stop()
        await client.remove_channel(viewer)
        assert not client.is_connected
