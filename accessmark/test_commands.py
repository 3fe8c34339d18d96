"""
Annotation Command Tests

Test Coverage:
--------------
1. Every recognized action end to end (mutation -> diff -> repaint -> save)
2. Error results for bad input, unknown actions and unknown links
3. Self-healing of orphans and duplicated nodes
4. Serialization of concurrent commands and mutation before suspension
5. Rollback when a command fails halfway
"""

import asyncio

import pytest

from accessmark.annotations.models import AnnotationKind, KeyToken
from accessmark.commands import NO_SELECTION_MESSAGE, NOT_FOUND_MESSAGE, AnnotationSession, UIMessage
from accessmark.errors import OrphanedLinkError
from accessmark.repaint import RepaintAction
from accessmark.settings import DEFAULT_SETTINGS, PluginSettings, read_options
from accessmark.snapshot import load_snapshot

KEYSTOP = AnnotationKind.KEYSTOP
LABEL = AnnotationKind.LABEL


@pytest.fixture
def session(page):
    return AnnotationSession(page)


@pytest.fixture
def buttons(frame):
    return [frame.create_child(f"Button {i}") for i in range(3)]


def send(session, action, **payload):
    return asyncio.run(session.dispatch({"action": action, "payload": payload}))


@pytest.fixture
def keystops(session, page, frame, buttons):
    """Three keystops in document order; returns their link ids."""
    page.selection = list(buttons)
    result = send(session, "add-stop", kind="keystop")
    assert result.ok
    return session.order_lists.get(frame, KEYSTOP)


# =============================================================================
# add-stop
# =============================================================================

class TestAddStop:
    """Tests for annotating the selection."""

    def test_empty_selection_is_an_error(self, session, document):
        result = send(session, "add-stop", kind="keystop")

        assert result.status == "error"
        assert result.toast_message == NO_SELECTION_MESSAGE
        assert document.notifications == [NO_SELECTION_MESSAGE]

    def test_selection_annotated_in_document_order(self, session, page, frame, buttons):
        page.selection = [buttons[2], buttons[0]]

        result = send(session, "add-stop", kind="keystop")

        link_ids = session.order_lists.get(frame, KEYSTOP)
        assert result.ok
        assert [session.registry.resolve(link_id) for link_id in link_ids] == [buttons[0], buttons[2]]
        assert session.store.get(buttons[2], KEYSTOP).order == 1

    def test_badges_drawn_and_baseline_saved(self, session, page, keystops):
        assert session.last_diff.added == tuple(sorted(keystops))
        assert set(session.painter.badges) == set(keystops)
        assert set(load_snapshot(page).entries) == set(keystops)

    def test_already_annotated_nodes_are_skipped(self, session, page, frame, buttons, keystops):
        page.selection = [buttons[0]]

        result = send(session, "add-stop", kind="keystop")

        assert result.ok
        assert session.order_lists.get(frame, KEYSTOP) == keystops
        assert not session.last_diff.has_changes

    def test_add_with_payload(self, session, page, buttons):
        page.selection = [buttons[0]]
        send(session, "add-stop", kind="label", payload={"role": "button", "label": "Pay"})
        assert session.store.get(buttons[0], LABEL).payload.label == "Pay"

    def test_second_kind_forms_bundle(self, session, page, buttons, keystops):
        page.selection = [buttons[0]]
        send(session, "add-stop", kind="label")
        assert len(session.store.bundles_for(buttons[0])) == 1

    def test_unknown_kind_is_an_error(self, session, page, buttons):
        page.selection = [buttons[0]]
        result = send(session, "add-stop", kind="tooltip")

        assert result.status == "error"
        assert buttons[0].get_plugin_data_keys() == []


# =============================================================================
# reorder-stop / remove-stop
# =============================================================================

class TestReorderRemove:
    """Tests for tab-order edits."""

    def test_reorder(self, session, frame, keystops):
        first, second, third = keystops

        result = send(session, "reorder-stop", linkId=first, toIndex=2)

        assert result.ok
        assert session.order_lists.get(frame, KEYSTOP) == [second, third, first]
        assert set(session.last_diff.moved) == {first, second, third}
        actions = [d.action for d in session.last_repaint.applied]
        assert actions == [RepaintAction.MOVE] * 3

    def test_reorder_past_end_appends(self, session, frame, keystops):
        send(session, "reorder-stop", linkId=keystops[0], toIndex=50)
        assert session.order_lists.get(frame, KEYSTOP)[-1] == keystops[0]

    def test_reorder_requires_integer_index(self, session, frame, keystops):
        result = send(session, "reorder-stop", linkId=keystops[0], toIndex="2")

        assert result.status == "error"
        assert session.order_lists.get(frame, KEYSTOP) == keystops

    def test_remove(self, session, frame, buttons, keystops):
        result = send(session, "remove-stop", linkId=keystops[1])

        assert result.ok
        assert session.store.get(buttons[1], KEYSTOP) is None
        assert session.order_lists.get(frame, KEYSTOP) == [keystops[0], keystops[2]]
        assert session.store.get(buttons[2], KEYSTOP).order == 1
        assert session.last_diff.removed == (keystops[1],)
        assert session.last_repaint.applied[0].action is RepaintAction.REMOVE
        assert keystops[1] not in session.painter.badges

    def test_remove_last_deletes_list(self, session, frame, keystops):
        for link_id in keystops:
            send(session, "remove-stop", linkId=link_id)

        assert session.order_lists.containers() == []
        assert load_snapshot(session.page).entries == {}

    def test_unknown_link(self, session, document, keystops):
        result = send(session, "remove-stop", linkId="nope")

        assert result.status == "error"
        assert result.toast_message == NOT_FOUND_MESSAGE
        assert document.notifications == [NOT_FOUND_MESSAGE]

    def test_missing_link_id(self, session, keystops):
        assert send(session, "reorder-stop", toIndex=0).status == "error"


# =============================================================================
# Payload edits
# =============================================================================

class TestPayloadEdits:
    """Tests for update-stop-payload, set-key and remove-key."""

    def test_update_payload(self, session, buttons, keystops):
        result = send(session, "update-stop-payload", linkId=keystops[0], payload={"keys": ["enter"]})

        assert result.ok
        assert session.store.get(buttons[0], KEYSTOP).payload.keys == (KeyToken.ENTER,)
        assert session.last_diff.updated == (keystops[0],)
        assert session.last_repaint.applied[0].action is RepaintAction.REDRAW

    def test_kind_cannot_change(self, session, buttons, keystops):
        result = send(session, "update-stop-payload", linkId=keystops[0], payload={"kind": "heading", "level": 2})

        assert result.status == "error"
        assert session.store.get(buttons[0], AnnotationKind.HEADING) is None
        assert session.store.get(buttons[0], KEYSTOP).payload.keys == ()

    def test_invalid_payload_is_an_error(self, session, keystops):
        result = send(session, "update-stop-payload", linkId=keystops[0], payload={"keys": ["tab"]})
        assert result.status == "error"
        assert "Invalid keystop payload" in result.log_message

    def test_set_and_remove_key(self, session, buttons, keystops):
        send(session, "set-key", linkId=keystops[0], key="enter")
        send(session, "set-key", linkId=keystops[0], key="escape")
        send(session, "set-key", linkId=keystops[0], key="enter")
        assert session.store.get(buttons[0], KEYSTOP).payload.keys == (KeyToken.ESCAPE, KeyToken.ENTER)

        send(session, "remove-key", linkId=keystops[0], key="escape")
        assert session.store.get(buttons[0], KEYSTOP).payload.keys == (KeyToken.ENTER,)

    def test_unknown_key(self, session, keystops):
        assert send(session, "set-key", linkId=keystops[0], key="tab").status == "error"

    def test_keys_only_on_keystops(self, session, page, frame, buttons):
        page.selection = [buttons[0]]
        send(session, "add-stop", kind="label")
        label = session.order_lists.get(frame, LABEL)[0]

        result = send(session, "set-key", linkId=label, key="enter")

        assert result.status == "error"


# =============================================================================
# Options, refresh and protocol errors
# =============================================================================

class TestViewContext:

    def test_set_view_context(self, session, page):
        result = send(session, "set-view-context", currentView="a11y-keyboard")

        assert result.ok
        assert read_options(page).current_view == "a11y-keyboard"

    def test_unknown_view(self, session, page):
        result = send(session, "set-view-context", currentView="elsewhere")

        assert result.status == "error"
        assert read_options(page).current_view == "general"


class TestProtocol:
    """Tests for unrecognized actions and malformed messages."""

    def test_unknown_action_is_noop_with_toast(self, session, page, document, keystops):
        before = {node.id: node.get_plugin_data_keys() for node in page.walk()}

        result = send(session, "explode")

        assert result.status == "error"
        assert result.toast_message == "Unknown action: explode"
        assert document.notifications == ["Unknown action: explode"]
        assert {node.id: node.get_plugin_data_keys() for node in page.walk()} == before

    def test_ui_message_model_accepted(self, session):
        result = asyncio.run(session.dispatch(UIMessage(action="refresh")))
        assert result.ok

    @pytest.mark.parametrize("message", [
        {"action": "refresh", "payload": None},
        {"payload": {}},
        {"action": "refresh", "extra": True},
    ])
    def test_malformed_message_is_an_error_result(self, session, page, document, keystops, message):
        before = {node.id: node.get_plugin_data_keys() for node in page.walk()}

        result = asyncio.run(session.dispatch(message))

        assert result.status == "error"
        assert result.toast_message.startswith("Invalid message payload")
        assert document.notifications == [result.toast_message]
        assert {node.id: node.get_plugin_data_keys() for node in page.walk()} == before

    def test_actions(self, session):
        assert "add-stop" in session.actions
        assert "refresh" in session.actions


class TestSelfHealing:
    """Orphans and duplicates are repaired without user involvement."""

    def test_external_delete_is_pruned_on_refresh(self, session, frame, buttons, keystops):
        buttons[1].remove()

        result = send(session, "refresh")

        assert result.ok
        assert session.order_lists.get(frame, KEYSTOP) == [keystops[0], keystops[2]]
        assert session.store.get(buttons[2], KEYSTOP).order == 1
        assert session.last_diff.removed == (keystops[1],)
        assert keystops[2] in session.last_diff.moved

    def test_duplicated_node_is_stripped(self, session, buttons, keystops):
        copy = buttons[0].clone()

        send(session, "refresh")

        assert session.store.records_for(copy) == []
        assert session.registry.resolve(keystops[0]) is buttons[0]

    def test_duplicated_container_keeps_one_list(self, session, page, frame, buttons, keystops):
        copy = frame.clone()

        result = send(session, "refresh")

        assert result.ok
        assert session.order_lists.get(copy, KEYSTOP) == []
        assert session.order_lists.get(frame, KEYSTOP) == keystops
        assert all(session.store.records_for(node) == [] for node in copy.children)
        assert [session.store.get(node, KEYSTOP).order for node in buttons] == [0, 1, 2]
        assert not session.last_diff.has_changes
        assert send(session, "reorder-stop", linkId=keystops[0], toIndex=2).ok

    def test_reparented_node_changes_container(self, session, page, frame, buttons, keystops):
        other = page.create_child("Shipping", "FRAME")
        other.append_child(buttons[1])

        result = send(session, "refresh")

        assert result.ok
        assert session.order_lists.get(frame, KEYSTOP) == [keystops[0], keystops[2]]
        assert session.order_lists.get(other, KEYSTOP) == [keystops[1]]
        assert session.store.get(buttons[1], KEYSTOP).container_id == other.id
        assert session.store.get(buttons[2], KEYSTOP).order == 1
        assert keystops[1] in session.last_diff.moved
        assert session.last_diff.entry(keystops[1]).container_id == other.id

    def test_restored_node_is_listed_again(self, session, document, page, frame, buttons, keystops):
        saved = {key: buttons[1].get_plugin_data(key) for key in buttons[1].get_plugin_data_keys()}
        buttons[1].remove()
        send(session, "refresh")
        assert session.order_lists.get(frame, KEYSTOP) == [keystops[0], keystops[2]]

        restored = frame.insert_child(1, document.create_node("Button 1"))
        for key, value in saved.items():
            restored.set_plugin_data(key, value)
        page.selection = [restored]

        result = send(session, "add-stop", kind="keystop")

        assert result.ok
        assert session.order_lists.get(frame, KEYSTOP) == [keystops[0], keystops[2], keystops[1]]
        assert session.registry.resolve(keystops[1]) is restored
        assert session.last_diff.added == (keystops[1],)
        assert keystops[1] in session.painter.badges

    def test_recycled_id_does_not_inherit_annotation(self, session, frame, buttons, keystops):
        recycled_id = buttons[0].id
        buttons[0].remove()
        stranger = frame.create_child("Stranger")
        assert stranger.id == recycled_id

        send(session, "refresh")

        assert session.registry.resolve(keystops[0]) is None
        assert keystops[0] not in session.painter.badges

    def test_duplicate_orders_are_renumbered(self, session, frame, buttons, keystops):
        session.store.set_order(buttons[2], KEYSTOP, 0)

        send(session, "refresh")

        orders = [session.store.get(node, KEYSTOP).order for node in buttons]
        assert orders == [0, 1, 2]

    def test_corrupt_record_fails_loudly(self, session, buttons, keystops):
        buttons[0].set_plugin_data(DEFAULT_SETTINGS.key("keystopNodeData"), "{corrupt")
        with pytest.raises(ValueError):
            send(session, "refresh")


# =============================================================================
# Concurrency and atomicity
# =============================================================================

class TestConcurrency:
    """Commands are serialized and never suspend mid-mutation."""

    def test_commands_processed_in_receipt_order(self, session, frame, keystops):
        first, second, third = keystops

        async def burst():
            return await asyncio.gather(
                session.dispatch({"action": "reorder-stop", "payload": {"linkId": first, "toIndex": 2}}),
                session.dispatch({"action": "reorder-stop", "payload": {"linkId": second, "toIndex": 2}}),
            )

        results = asyncio.run(burst())

        assert all(result.ok for result in results)
        assert session.order_lists.get(frame, KEYSTOP) == [third, first, second]

    def test_mutation_complete_before_font_load(self, session, document, frame, buttons, keystops, monkeypatch):
        observed = []
        original = document.load_font_async

        async def spy(fonts):
            link_ids = session.order_lists.get(frame, KEYSTOP)
            observed.append([session.store.get(session.registry.resolve(link_id), KEYSTOP).order for link_id in link_ids])
            return await original(fonts)

        monkeypatch.setattr(document, "load_font_async", spy)
        send(session, "reorder-stop", linkId=keystops[2], toIndex=0)

        assert observed == [[0, 1, 2]]
        assert session.order_lists.get(frame, KEYSTOP)[0] == keystops[2]

    def test_failed_command_leaves_state_untouched(self, session, page, frame, buttons, monkeypatch):
        page.selection = list(buttons)
        calls = []
        original_insert = session.order_lists.insert

        def flaky_insert(container, kind, link_id, at_index=None):
            calls.append(link_id)
            if len(calls) == 2:
                raise OrphanedLinkError(link_id)
            return original_insert(container, kind, link_id, at_index)

        monkeypatch.setattr(session.order_lists, "insert", flaky_insert)

        result = send(session, "add-stop", kind="keystop")

        assert result.status == "error"
        assert all(node.get_plugin_data_keys() == [] for node in buttons)
        assert frame.get_plugin_data_keys() == []


class TestSettings:

    def test_custom_namespace(self, page, frame, buttons):
        session = AnnotationSession(page, PluginSettings(identifier="org.example"))
        page.selection = [buttons[0]]
        send(session, "add-stop", kind="heading")

        assert "org.example.headingList-001" in frame.get_plugin_data_keys()
        assert "org.example.headingAnnotations-001" in page.get_plugin_data_keys()
