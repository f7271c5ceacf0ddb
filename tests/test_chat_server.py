#!/usr/bin/env python3
"""
Unit tests for the chat server message router.

Tests the per-connection state machine, identity claims, chat handling,
slash commands and the hand-off to the AI participant.
"""

import asyncio
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeCollaborator, build_chat_server, join, open_connection, send
from server.chat.registry import ConnectionState
from server.errors import AiError


class ChatServerTestCase(unittest.IsolatedAsyncioTestCase):

    collaborator = None

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.server = build_chat_server(self.tmp.name, self.collaborator)

    async def asyncTearDown(self):
        self.tmp.cleanup()

    async def history_texts(self):
        return [e['text'] for e in await self.server.history.entries()]


class TestIdentification(ChatServerTestCase):
    """Test cases for identity claims and the join sequence."""

    async def test_join_sequence_order(self):
        """Test that a joiner gets history, confirmation, then presence."""
        ann = await join(self.server, 'Ann')

        self.assertEqual(ann.transport.types(), ['chatHistory', 'privateSystem', 'userList', 'userList'])
        self.assertEqual(ann.transport.sent[1]['text'], 'You are connected as Ann.')
        self.assertEqual(ann.transport.sent[2]['users'], ['AI', 'Ann'])
        self.assertIs(ann.state, ConnectionState.IDENTIFIED)

    async def test_join_is_announced_to_others_only(self):
        """Test that existing users see the join notice and new presence."""
        ann = await join(self.server, 'Ann')
        ann.transport.clear()

        bo = await join(self.server, 'Bo', '10.0.0.2:4000')

        self.assertEqual(ann.transport.types(), ['system', 'userList'])
        self.assertEqual(ann.transport.sent[0]['text'], 'Bo has joined the chat.')
        self.assertEqual(ann.transport.sent[1]['users'], ['AI', 'Ann', 'Bo'])
        self.assertNotIn('system', bo.transport.types())

    async def test_joiner_receives_prior_history(self):
        """Test that history replay carries earlier chat."""
        ann = await join(self.server, 'Ann')
        await send(self.server, ann, {"type": "message", "text": "first!"})

        bo = await join(self.server, 'Bo')

        replay = bo.transport.sent[0]
        self.assertEqual(replay['type'], 'chatHistory')
        self.assertEqual([e['text'] for e in replay['history']],
                         ['Ann has joined the chat.', 'first!'])

    async def test_message_before_identification_is_rejected(self):
        """Test that only setUsername is accepted while unidentified."""
        connection = await open_connection(self.server)
        await send(self.server, connection, {"type": "message", "text": "hello"})

        self.assertEqual(connection.transport.types(), ['privateSystem'])
        self.assertEqual(connection.transport.sent[0]['error'], 'ProtocolError')
        self.assertIsNone(connection.transport.closed)
        self.assertEqual(await self.history_texts(), [])

    async def test_taken_name_closes_with_policy_code(self):
        """Test that a duplicate claim gets NameTaken and a 1008 close."""
        await join(self.server, 'sam')
        loser = await join(self.server, 'SAM', '10.0.0.2:4000')

        self.assertEqual(loser.transport.sent[0]['error'], 'NameTaken')
        self.assertEqual(loser.transport.closed[0], 1008)
        self.assertIs(loser.state, ConnectionState.CLOSED)
        self.assertEqual(await self.server.presence.snapshot(), ['AI', 'sam'])

    async def test_reserved_name_closes_with_policy_code(self):
        """Test that claiming AI is refused."""
        connection = await join(self.server, 'ai')

        self.assertEqual(connection.transport.sent[0]['error'], 'NameReserved')
        self.assertEqual(connection.transport.closed[0], 1008)

    async def test_blank_name_closes_with_policy_code(self):
        """Test that a whitespace-only name is InvalidName."""
        connection = await join(self.server, '   ')

        self.assertEqual(connection.transport.sent[0]['error'], 'InvalidName')
        self.assertEqual(connection.transport.closed[0], 1008)

    async def test_concurrent_case_variant_claims(self):
        """Test that concurrent sam/Sam claims leave exactly one identified."""
        first = await open_connection(self.server, '10.0.0.1:4000')
        second = await open_connection(self.server, '10.0.0.2:4000')

        await asyncio.gather(
            send(self.server, first, {"type": "setUsername", "username": "sam"}),
            send(self.server, second, {"type": "setUsername", "username": "Sam"}),
        )

        closed = [c for c in (first, second) if c.transport.closed]
        identified = [c for c in (first, second) if c.is_identified]
        self.assertEqual(len(closed), 1)
        self.assertEqual(len(identified), 1)
        self.assertEqual(closed[0].transport.closed[0], 1008)
        self.assertEqual(closed[0].transport.sent[0]['error'], 'NameTaken')

    async def test_second_claim_is_protocol_error(self):
        """Test that an identified connection cannot rename itself."""
        ann = await join(self.server, 'Ann')
        ann.transport.clear()

        await send(self.server, ann, {"type": "setUsername", "username": "Anna"})

        self.assertEqual(ann.transport.sent[0]['error'], 'ProtocolError')
        self.assertIsNone(ann.transport.closed)
        self.assertEqual(ann.username, 'Ann')


class TestChat(ChatServerTestCase):
    """Test cases for chat messages and malformed input."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.ann = await join(self.server, 'Ann')
        self.bo = await join(self.server, 'Bo', '10.0.0.2:4000')
        self.ann.transport.clear()
        self.bo.transport.clear()

    async def test_chat_is_broadcast_to_everyone_and_persisted(self):
        """Test that a chat line reaches the sender too and lands in history."""
        await send(self.server, self.ann, {"type": "message", "text": "  hello all  "})

        for connection in (self.ann, self.bo):
            self.assertEqual(len(connection.transport.sent), 1)
            message = connection.transport.sent[0]
            self.assertEqual(message['type'], 'message')
            self.assertEqual(message['username'], 'Ann')
            self.assertEqual(message['text'], 'hello all')
            self.assertIn('timestamp', message)
        self.assertEqual((await self.history_texts())[-1], 'hello all')

    async def test_whitespace_chat_is_dropped(self):
        """Test that whitespace-only text produces no broadcast and no history."""
        before = await self.history_texts()

        await send(self.server, self.ann, {"type": "message", "text": " \t\n "})

        self.assertEqual(self.ann.transport.sent, [])
        self.assertEqual(self.bo.transport.sent, [])
        self.assertEqual(await self.history_texts(), before)

    async def test_malformed_json_keeps_connection_open(self):
        """Test that unparseable frames get a private error."""
        await send(self.server, self.ann, '{not json')

        self.assertEqual(self.ann.transport.types(), ['privateSystem'])
        self.assertEqual(self.ann.transport.sent[0]['text'], 'Error: Invalid message format.')
        self.assertIsNone(self.ann.transport.closed)
        self.assertEqual(self.bo.transport.sent, [])

    async def test_non_object_and_untyped_payloads(self):
        """Test that arrays and missing types are protocol errors."""
        await send(self.server, self.ann, '[1, 2, 3]')
        await send(self.server, self.ann, {"text": "no type"})

        self.assertEqual([m['error'] for m in self.ann.transport.sent], ['ProtocolError', 'ProtocolError'])

    async def test_unknown_type(self):
        """Test that unknown envelope types are rejected privately."""
        await send(self.server, self.ann, {"type": "dance"})

        self.assertEqual(self.ann.transport.sent[0]['text'], 'Error: Unknown message type.')

    async def test_non_string_text(self):
        """Test that a non-string text field is a protocol error."""
        await send(self.server, self.ann, {"type": "message", "text": 5})

        self.assertEqual(self.ann.transport.sent[0]['error'], 'ProtocolError')
        self.assertEqual(self.bo.transport.sent, [])

    async def test_disconnect_announces_leave_once(self):
        """Test that cleanup broadcasts leave and presence exactly once."""
        await self.server.disconnect_client(self.ann)
        await self.server.disconnect_client(self.ann)

        self.assertEqual(self.bo.transport.types(), ['system', 'userList'])
        self.assertEqual(self.bo.transport.sent[0]['text'], 'Ann has left the chat.')
        self.assertEqual(self.bo.transport.sent[1]['users'], ['AI', 'Bo'])

    async def test_messages_after_close_are_ignored(self):
        """Test that a closed connection's late frames are dropped."""
        await self.server.disconnect_client(self.ann)
        self.bo.transport.clear()

        await send(self.server, self.ann, {"type": "message", "text": "ghost"})

        self.assertEqual(self.bo.transport.sent, [])


class TestCommands(ChatServerTestCase):
    """Test cases for slash commands."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.ann = await join(self.server, 'Ann', '192.168.1.5:6000')
        self.bo = await join(self.server, 'Bo', '192.168.1.6:6001')
        self.ann.transport.clear()
        self.bo.transport.clear()

    async def test_me_broadcasts_action(self):
        """Test that /me dances from Ann yields exactly one action envelope."""
        await send(self.server, self.ann, {"type": "command", "command": "me", "args": "dances"})

        for connection in (self.ann, self.bo):
            self.assertEqual(connection.transport.types(), ['action'])
            self.assertEqual(connection.transport.sent[0]['text'], '* Ann dances *')
        self.assertEqual((await self.history_texts())[-1], '* Ann dances *')

    async def test_me_without_text_is_usage_error(self):
        """Test that an empty /me broadcasts nothing."""
        await send(self.server, self.ann, {"type": "command", "command": "me", "args": "   "})
        await send(self.server, self.ann, {"type": "command", "command": "me"})

        self.assertEqual([m['error'] for m in self.ann.transport.sent], ['CommandError', 'CommandError'])
        self.assertIn('Usage', self.ann.transport.sent[0]['text'])
        self.assertEqual(self.bo.transport.sent, [])

    async def test_quit_with_reason(self):
        """Test that /quit announces the leave to others and closes normally."""
        await send(self.server, self.ann, {"type": "command", "command": "quit", "args": "gotta run"})

        self.assertEqual(self.ann.transport.closed, (1000, 'gotta run'))
        self.assertNotIn('system', self.ann.transport.types())
        self.assertEqual(self.bo.transport.types(), ['system', 'userList'])
        self.assertEqual(self.bo.transport.sent[0]['text'], 'Ann has left the chat (gotta run).')
        self.assertEqual(self.bo.transport.sent[1]['users'], ['AI', 'Bo'])

        # the socket closing afterwards runs cleanup again without a second notice
        await self.server.disconnect_client(self.ann)
        self.assertEqual(len(self.bo.transport.sent), 2)

    async def test_quit_without_reason(self):
        """Test that /quit uses a default reason."""
        await send(self.server, self.ann, {"type": "command", "command": "/QUIT"})

        self.assertEqual(self.ann.transport.closed, (1000, 'Client quit'))

    async def test_whois_connected_user(self):
        """Test that /whois privately reveals a user's address."""
        await send(self.server, self.ann, {"type": "command", "command": "whois", "args": "bo"})

        self.assertEqual(self.ann.transport.types(), ['privateSystem'])
        self.assertEqual(self.ann.transport.sent[0]['text'], 'Bo is connected from 192.168.1.6:6001.')
        self.assertEqual(self.bo.transport.sent, [])

    async def test_whois_ai(self):
        """Test that /whois recognizes the virtual participant."""
        await send(self.server, self.ann, {"type": "command", "command": "whois", "args": "Ai"})

        self.assertIn('virtual participant', self.ann.transport.sent[0]['text'])

    async def test_whois_unknown_user(self):
        """Test that /whois reports users that are not connected."""
        await send(self.server, self.ann, {"type": "command", "command": "whois", "args": "Zed"})

        self.assertEqual(self.ann.transport.sent[0]['text'], 'User Zed is not connected.')

    async def test_whois_without_name(self):
        """Test that /whois needs an argument."""
        await send(self.server, self.ann, {"type": "command", "command": "whois"})

        self.assertEqual(self.ann.transport.sent[0]['error'], 'CommandError')

    async def test_unknown_command_is_named(self):
        """Test that unknown commands are reported privately by name."""
        await send(self.server, self.ann, {"type": "command", "command": "dance", "args": "x"})

        self.assertEqual(self.ann.transport.sent[0]['text'], 'Error: Unknown command: /dance')
        self.assertIsNone(self.ann.transport.closed)
        self.assertEqual(self.bo.transport.sent, [])

    async def test_non_string_args(self):
        """Test that malformed command payloads are protocol errors."""
        await send(self.server, self.ann, {"type": "command", "command": "me", "args": ["x"]})

        self.assertEqual(self.ann.transport.sent[0]['error'], 'ProtocolError')


class TestAiHandoff(ChatServerTestCase):
    """Test cases for chat lines reaching the AI participant."""

    async def asyncSetUp(self):
        self.collaborator = FakeCollaborator()
        await super().asyncSetUp()
        self.ann = await join(self.server, 'Ann')
        self.bo = await join(self.server, 'Bo')
        self.ann.transport.clear()
        self.bo.transport.clear()

    async def test_explicit_address_gets_reply(self):
        """Test that "ai: what time is it" from Bo gets an AI chat reply."""
        self.collaborator.replies = ['It is noon.']

        await send(self.server, self.bo, {"type": "message", "text": "ai: what time is it"})

        self.assertEqual(self.collaborator.classify_calls, [])
        self.assertEqual(self.collaborator.generate_calls, [('what time is it', [])])
        for connection in (self.ann, self.bo):
            self.assertEqual([(m['username'], m['text']) for m in connection.transport.sent],
                             [('Bo', 'ai: what time is it'), ('AI', 'It is noon.')])
        self.assertEqual((await self.history_texts())[-1], 'It is noon.')

    async def test_ai_action_reply(self):
        """Test that a /me reply is broadcast as an AI action."""
        self.collaborator.replies = ['/me waves at Bo']

        await send(self.server, self.bo, {"type": "message", "text": "@ai say hi"})

        last = self.ann.transport.sent[-1]
        self.assertEqual(last['type'], 'action')
        self.assertEqual(last['text'], '* AI waves at Bo *')

    async def test_generation_failure_emits_nothing(self):
        """Test that a failed generation is invisible to users."""
        self.collaborator.replies = [AiError('timeout')]

        await send(self.server, self.bo, {"type": "message", "text": "ai: hello"})

        self.assertEqual(self.ann.transport.types(), ['message'])

    async def test_unaddressed_chat_does_not_reach_ai(self):
        """Test that ordinary chat calls neither collaborator."""
        await send(self.server, self.bo, {"type": "message", "text": "lunch anyone?"})

        self.assertEqual(self.collaborator.generate_calls, [])
        self.assertEqual(self.collaborator.classify_calls, [])

    async def test_other_users_chat_while_generation_is_pending(self):
        """Test that Bo's chat is delivered while Ann's AI reply is still being generated."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_generation():
            started.set()
            await release.wait()
        self.collaborator.on_generate = slow_generation
        self.collaborator.replies = ['late']

        ann_turn = asyncio.create_task(send(self.server, self.ann, {"type": "message", "text": "ai: slow"}))
        await asyncio.wait_for(started.wait(), timeout=1)

        await send(self.server, self.bo, {"type": "message", "text": "hi"})
        self.assertEqual([m['text'] for m in self.ann.transport.sent], ['ai: slow', 'hi'])
        self.assertFalse(ann_turn.done())

        release.set()
        await asyncio.wait_for(ann_turn, timeout=1)

        for connection in (self.ann, self.bo):
            self.assertEqual([m['text'] for m in connection.transport.sent], ['ai: slow', 'hi', 'late'])
        self.assertEqual(self.ann.transport.sent[-1]['username'], 'AI')

    async def test_sender_gone_before_reply(self):
        """Test that a reply still reaches others if the sender left mid-flight."""
        async def bo_leaves():
            await self.server.disconnect_client(self.bo)
        self.collaborator.on_generate = bo_leaves
        self.collaborator.replies = ['Bye Bo.']

        await send(self.server, self.bo, {"type": "message", "text": "ai: see you"})

        self.assertEqual(self.ann.transport.sent[-1]['text'], 'Bye Bo.')
        self.assertNotIn('Bye Bo.', [m.get('text') for m in self.bo.transport.sent])


if __name__ == '__main__':
    unittest.main()
