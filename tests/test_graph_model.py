"""
Test Graph Model - validation, edge resolution and edit operations

Run with: python3 tests/test_graph_model.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from formflow.contracts import Choice, ChoiceStep, ConclusionStep, FormGraph, QuantityChoice, QuantityStep, TextStep
from formflow.core import graph_model
from formflow.errors import GraphValidationError


def make_graph():
    """q1 (text) -> q2 (choice: A -> q3, B -> q1) ; q3 (quantity) -> end"""
    return FormGraph(
        root_step_id="q1",
        steps={
            "q1": TextStep(id="q1", question="Name?", next_step_id="q2"),
            "q2": ChoiceStep(id="q2", question="Pick", choices=[
                Choice(id="a", label="A", next_step_id="q3"),
                Choice(id="b", label="B", next_step_id="q1"),
            ]),
            "q3": QuantityStep(id="q3", question="How many?", quantity_choices=[
                QuantityChoice(id="kayak", label="Kayak", price=25, limit=4),
                QuantityChoice(id="none", label="No thanks", is_no_thanks=True),
            ]),
        },
    )


def test_is_usable():
    """Usable only when the root resolves"""
    assert graph_model.is_usable(make_graph())
    assert not graph_model.is_usable(FormGraph())
    assert not graph_model.is_usable(FormGraph(root_step_id="gone", steps={}))
    assert not graph_model.is_usable(None)

    print("✓ is_usable test passed")


def test_resolve_next():
    """Edges resolve per step type; absence means terminal"""
    graph = make_graph()

    assert graph_model.resolve_next(graph.steps["q1"]) == "q2"
    assert graph_model.resolve_next(graph.steps["q2"], "a") == "q3"
    assert graph_model.resolve_next(graph.steps["q2"], "b") == "q1"
    assert graph_model.resolve_next(graph.steps["q2"], "unknown") is None
    assert graph_model.resolve_next(graph.steps["q2"]) is None
    assert graph_model.resolve_next(graph.steps["q3"]) is None
    assert graph_model.resolve_next(ConclusionStep(id="end")) is None
    assert graph_model.resolve_next(None) is None

    print("✓ resolve_next test passed")


def test_parse_graph_valid():
    """A well-formed payload becomes typed steps"""
    data = make_graph().to_json()
    graph = graph_model.parse_graph(data)

    assert isinstance(graph.steps["q2"], ChoiceStep)
    assert graph.steps["q3"].quantity_choices[0].limit == 4
    assert graph.to_json() == data

    print("✓ parse_graph valid test passed")


def test_parse_graph_accepts_dangling_edges_and_cycles():
    """Edges are not reference-checked"""
    data = {
        "rootStepId": "q1",
        "steps": {
            "q1": {"id": "q1", "type": "text", "question": "?", "nextStepId": "nowhere"},
            "q2": {"id": "q2", "type": "text", "question": "?", "nextStepId": "q2"},
        },
    }
    graph = graph_model.parse_graph(data)
    assert graph.steps["q1"].next_step_id == "nowhere"

    print("✓ Dangling edges accepted test passed")


def test_parse_graph_collects_all_errors():
    """Every problem is reported in one exception"""
    data = {
        "steps": {
            "q1": {"id": "q1", "type": "essay", "question": "?"},
            "q2": {"id": "other", "type": "text"},
            "q3": {"id": "q3", "type": "quantity", "question": "?", "quantityChoices": [
                {"id": "x", "label": "X", "price": -1},
                {"id": "y", "label": "Y", "price": 1, "limit": -5},
            ]},
        },
    }

    with pytest.raises(GraphValidationError) as exc_info:
        graph_model.parse_graph(data)

    errors = exc_info.value.errors
    assert "Missing 'rootStepId'" in errors
    assert any("invalid type 'essay'" in e for e in errors)
    assert any("mismatched id 'other'" in e for e in errors)
    assert any("'q2' missing 'question'" in e for e in errors)
    assert any("invalid price -1" in e for e in errors)
    assert any("invalid limit -5" in e for e in errors)
    assert str(exc_info.value).startswith("Graph validation failed:")

    # Still a ValueError for callers that only know about built-ins
    assert isinstance(exc_info.value, ValueError)

    print("✓ Validation error collection test passed")


def test_parse_graph_rejects_duplicate_choice_ids():
    data = {
        "rootStepId": "q1",
        "steps": {
            "q1": {"id": "q1", "type": "choice", "question": "?", "choices": [
                {"id": "c", "label": "One"},
                {"id": "c", "label": "Two"},
            ]},
        },
    }

    with pytest.raises(GraphValidationError, match="Duplicate choice id 'c'"):
        graph_model.parse_graph(data)

    print("✓ Duplicate choice id test passed")


def test_find_structural_issues():
    """Lint reports dangling, unreachable and duplicate problems"""
    graph = make_graph()
    assert graph_model.find_structural_issues(graph) == []

    graph.steps["q3"].next_step_id = "missing"
    graph.steps["orphan"] = TextStep(id="orphan", question="Nobody links here")
    graph.steps["q3"].quantity_choices.append(QuantityChoice(id="none2", label="Nope", is_no_thanks=True))

    issues = graph_model.find_structural_issues(graph)
    assert "Step 'q3' points to missing step 'missing'" in issues
    assert "Step 'orphan' is unreachable from the root" in issues
    assert "Step 'q3' has 2 'no thanks' entries" in issues

    print("✓ Structural issues test passed")


def test_insert_step_after_text():
    """Insert rewires the parent's edge to a new terminal step"""
    graph = make_graph()
    result = graph_model.insert_step_after(graph, "q3", "conclusion", step_id="end")

    assert result.steps["q3"].next_step_id == "end"
    assert isinstance(result.steps["end"], ConclusionStep)
    assert result.steps["end"].question == "Thank You!"

    # Input untouched
    assert "end" not in graph.steps
    assert graph.steps["q3"].next_step_id is None

    print("✓ insert_step_after (text/quantity parent) test passed")


def test_insert_step_after_choice():
    """On choice steps only the named choice's edge moves"""
    graph = make_graph()
    result = graph_model.insert_step_after(graph, "q2", "text", choice_id="b", step_id="new")

    assert result.steps["q2"].find_choice("b").next_step_id == "new"
    assert result.steps["q2"].find_choice("a").next_step_id == "q3"
    assert result.steps["new"].next_step_id is None

    with pytest.raises(ValueError, match="does not exist"):
        graph_model.insert_step_after(graph, "q2", "text", choice_id="zzz")

    print("✓ insert_step_after (choice parent) test passed")


def test_insert_step_after_conclusion_refused():
    graph = make_graph()
    graph = graph_model.insert_step_after(graph, "q3", "conclusion", step_id="end")

    with pytest.raises(ValueError, match="conclusion"):
        graph_model.insert_step_after(graph, "end", "text")

    print("✓ Conclusion parent refused test passed")


def test_create_first_step():
    graph = graph_model.create_first_step(FormGraph(), "choice", step_id="root")

    assert graph.root_step_id == "root"
    assert [c.label for c in graph.steps["root"].choices] == ["Option 1", "Option 2"]
    assert graph_model.is_usable(graph)

    print("✓ create_first_step test passed")


def test_new_step_defaults():
    quantity = graph_model.new_step("quantity")
    labels = [(c.label, c.price, c.is_no_thanks) for c in quantity.quantity_choices]
    assert labels == [("Item 1", 10, False), ("Item 2", 15, False), ("No thanks", 0, True)]

    text = graph_model.new_step("text")
    assert text.question == "Enter your question"
    assert text.placeholder == "Enter your answer"

    with pytest.raises(ValueError, match="Unknown step type"):
        graph_model.new_step("essay")

    print("✓ New step defaults test passed")


def test_update_step():
    graph = make_graph()
    result = graph_model.update_step(graph, "q1", question="Full name?", next_step_id=None)

    assert result.steps["q1"].question == "Full name?"
    assert result.steps["q1"].next_step_id is None
    assert graph.steps["q1"].question == "Name?"

    with pytest.raises(ValueError, match="cannot be changed"):
        graph_model.update_step(graph, "q1", id="x")
    with pytest.raises(ValueError, match="no field"):
        graph_model.update_step(graph, "q1", choices=[])
    with pytest.raises(ValueError, match="does not exist"):
        graph_model.update_step(graph, "nope", question="?")

    print("✓ update_step test passed")


def test_delete_step_nulls_references():
    """Every edge into the deleted step becomes None"""
    graph = make_graph()
    graph.steps["q4"] = TextStep(id="q4", question="?", next_step_id="q3")
    graph.steps["q2"].choices.append(Choice(id="c", label="C", next_step_id="q3"))

    result = graph_model.delete_step(graph, "q3")

    assert "q3" not in result.steps
    assert result.steps["q2"].find_choice("a").next_step_id is None
    assert result.steps["q2"].find_choice("c").next_step_id is None
    assert result.steps["q4"].next_step_id is None
    # Unrelated edges survive
    assert result.steps["q2"].find_choice("b").next_step_id == "q1"

    print("✓ delete_step reference rewrite test passed")


def test_delete_root_refused():
    with pytest.raises(ValueError, match="root step cannot be deleted"):
        graph_model.delete_step(make_graph(), "q1")

    print("✓ Root delete refused test passed")


def test_choice_edits():
    graph = make_graph()

    graph = graph_model.add_choice(graph, "q2")
    assert len(graph.steps["q2"].choices) == 3
    assert graph.steps["q2"].choices[-1].label == "Option 3"

    graph = graph_model.update_choice(graph, "q2", "a", label="Alpha", next_step_id=None)
    assert graph.steps["q2"].find_choice("a").label == "Alpha"
    assert graph.steps["q2"].find_choice("a").next_step_id is None

    graph = graph_model.delete_choice(graph, "q2", "b")
    assert [c.id for c in graph.steps["q2"].choices][0] == "a"
    assert len(graph.steps["q2"].choices) == 2

    with pytest.raises(ValueError, match="at least 2"):
        graph_model.delete_choice(graph, "q2", "a")
    with pytest.raises(ValueError, match="not a choice step"):
        graph_model.add_choice(graph, "q1")

    print("✓ Choice edit test passed")


def test_quantity_choice_edits():
    graph = make_graph()

    graph = graph_model.add_quantity_choice(graph, "q3", label="Snorkel", price=15)
    assert graph.steps["q3"].quantity_choices[-1].label == "Snorkel"

    graph = graph_model.update_quantity_choice(graph, "q3", "kayak", limit=None, price=30)
    assert graph.steps["q3"].find_choice("kayak").limit is None
    assert graph.steps["q3"].find_choice("kayak").price == 30

    with pytest.raises(ValueError, match="Price must be >= 0"):
        graph_model.update_quantity_choice(graph, "q3", "kayak", price=-1)
    with pytest.raises(ValueError, match="Limit must be >= 0"):
        graph_model.update_quantity_choice(graph, "q3", "kayak", limit=-1)

    single = graph_model.delete_quantity_choice(make_graph(), "q3", "none")
    with pytest.raises(ValueError, match="at least 1"):
        graph_model.delete_quantity_choice(single, "q3", "kayak")

    print("✓ Quantity choice edit test passed")


def test_revert_step():
    graph = make_graph()
    snapshot = graph.steps["q1"]
    edited = graph_model.update_step(graph, "q1", question="Changed")

    reverted = graph_model.revert_step(edited, snapshot)
    assert reverted.steps["q1"].question == "Name?"
    assert reverted.steps["q1"] is not snapshot

    print("✓ revert_step test passed")


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING GRAPH MODEL")
    print("="*60 + "\n")

    test_is_usable()
    test_resolve_next()
    test_parse_graph_valid()
    test_parse_graph_accepts_dangling_edges_and_cycles()
    test_parse_graph_collects_all_errors()
    test_parse_graph_rejects_duplicate_choice_ids()
    test_find_structural_issues()
    test_insert_step_after_text()
    test_insert_step_after_choice()
    test_insert_step_after_conclusion_refused()
    test_create_first_step()
    test_new_step_defaults()
    test_update_step()
    test_delete_step_nulls_references()
    test_delete_root_refused()
    test_choice_edits()
    test_quantity_choice_edits()
    test_revert_step()

    print("\n" + "="*60)
    print("ALL GRAPH MODEL TESTS PASSED ✓")
    print("="*60 + "\n")
