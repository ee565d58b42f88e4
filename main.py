"""
Console Test Harness for FormRunner

Simple console loop to fill a form graph before adding Flask complexity.

Usage:
    python main.py [path/to/form.json]

Type 'back' to go to the previous step, 'quit' to stop.
"""

import json
import logging
import sys
import tempfile

from formflow.commands import (
    EditFromReview, GoBack, SelectChoice, SetQuantity, Submit,
    SubmitConclusion, SubmitContact, SubmitQuantities, SubmitText,
)
from formflow.config import Settings
from formflow.contracts import ChoiceStep, ConclusionStep, QuantityStep, TextStep
from formflow.core.form_runner import FormPhase, FormRunner
from formflow.core.graph_model import find_structural_issues, parse_graph
from formflow.core.inventory_validator import InventoryValidator
from formflow.core.traversal import build_tree
from formflow.persistence import BookingSink, InventoryLedger, SubmissionLog
from formflow.utils.display_helpers import describe_step, format_review, render_tree

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_FORM_PATH = "data/sample_form.json"
EXIT_WORDS = ('quit', 'exit', 'stop')


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_result(result):
    """Print a rejected transition and its issues"""
    if result.accepted:
        return
    print(f"\n  ! {result.message}")
    for issue in result.issues:
        print(f"    - {issue}")
    print()


def ask(prompt):
    value = input(prompt).strip()
    if value.lower() in EXIT_WORDS:
        raise KeyboardInterrupt
    return value


def ask_question(runner):
    """Build the command for the step currently shown"""
    step = runner.current_step
    print()
    for line in describe_step(step):
        print(line)

    if isinstance(step, TextStep):
        value = ask("> ")
        return GoBack() if value.lower() == 'back' else SubmitText(value)

    if isinstance(step, ChoiceStep):
        value = ask("Choose a number > ")
        if value.lower() == 'back':
            return GoBack()
        if not value.isdigit() or not 1 <= int(value) <= len(step.choices):
            print("Please enter one of the numbers shown.")
            return None
        return SelectChoice(step.choices[int(value) - 1].id)

    if isinstance(step, QuantityStep):
        for choice in step.purchasable_choices():
            current = runner.quantity_selections.get(choice.id, 0)
            value = ask(f"How many '{choice.label}'? [{current}] > ")
            if value.lower() == 'back':
                return GoBack()
            if value:
                if not value.isdigit():
                    print("Please enter a whole number.")
                    return None
                runner.handle(SetQuantity(choice.id, int(value)))
        return SubmitQuantities()

    if isinstance(step, ConclusionStep):
        phone = None
        if runner.show_phone_input:
            phone = ask("Phone number > ")
            if phone.lower() == 'back':
                return GoBack()
        return SubmitConclusion(phone=phone)

    return None


def ask_contact():
    phone = ask("\nPhone number > ")
    if phone.lower() == 'back':
        return GoBack()
    name = ask("Name (optional) > ")
    return SubmitContact(phone=phone, name=name)


def ask_review(runner):
    print_separator("-")
    print("REVIEW")
    print_separator("-")
    for row in format_review(runner.review_items(), runner.total_price()):
        number = f"{row['index'] + 1}." if row['index'] is not None else "  "
        print(f"{number} {row['question']}: {row['answer']}")
    print()

    value = ask("Type 'submit', 'back', or a number to edit > ")
    if value.lower() == 'submit':
        return Submit()
    if value.lower() == 'back':
        return GoBack()
    if value.isdigit():
        return EditFromReview(int(value) - 1)
    return None


def main():
    """Run console test"""
    path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_FORM_PATH
    settings = Settings.from_env()

    print_separator()
    print("FORMFLOW - CONSOLE TEST")
    print_separator()

    try:
        with open(path, 'r') as f:
            data = json.load(f)
        graph = parse_graph(data.get("graph", data))
    except Exception as e:
        print(f"\nFailed to load form: {e}")
        return 1

    print(f"\nForm: {data.get('name', path)}\n")
    print(render_tree(build_tree(graph)))
    for issue in find_structural_issues(graph):
        print(f"  warning: {issue}")

    form_id = "console"
    ledger = InventoryLedger()
    ledger.register_graph(form_id, graph)
    log = SubmissionLog(tempfile.mkdtemp(prefix="formflow-"))

    runner = FormRunner(
        form_id,
        graph,
        sink=BookingSink(ledger, log),
        inventory=InventoryValidator(ledger, form_id),
        min_phone_digits=settings.min_phone_digits,
        submit_max_attempts=settings.submit_max_attempts,
        submit_base_delay=settings.submit_base_delay_seconds,
        submit_max_delay=settings.submit_max_delay_seconds,
    )

    print_separator()
    print("Type 'back' to go back, 'quit' to stop")
    print_separator()

    while not runner.is_submitted:
        try:
            if runner.phase == FormPhase.QUESTION:
                command = ask_question(runner)
            elif runner.phase == FormPhase.CONTACT:
                command = ask_contact()
            else:
                command = ask_review(runner)

            if command is None:
                continue

            result = runner.handle(command)
            print_result(result)
            print(f"[{runner.progress_percent()}% complete]")

            if result.accepted and runner.is_submitted:
                print_separator()
                print(result.message or "SUBMITTED")
                print_separator()

        except (KeyboardInterrupt, EOFError):
            print("\n\nStopped by user")
            break

    print_separator()
    print("Console test complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
