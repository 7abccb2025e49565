import pytest

from switchboard.errors import UnknownState
from switchboard.services.bot_engine import (
    BotState,
    ClientType,
    coerce_state,
    load_templates,
    normalize_input,
    parse_command,
    render_template,
    transition,
)


class TestNormalizeInput:
    def test_case_and_whitespace(self):
        assert normalize_input("  Soy   CLIENTE ") == "soy cliente"

    def test_keycap_emoji(self):
        assert normalize_input("1️⃣") == "1"

    def test_edge_punctuation(self):
        assert normalize_input("¡1!") == "1"
        assert normalize_input("¿menú?") == "menú"

    def test_none(self):
        assert normalize_input(None) == ""


class TestParseCommand:
    def test_exact_match_only(self):
        assert parse_command(BotState.CLIENT_MENU, "1") == "1"
        assert parse_command(BotState.CLIENT_MENU, "tengo 1 problema") is None
        assert parse_command(BotState.CLIENT_MENU, "12") is None

    def test_welcome_phrases_only_on_welcome(self):
        assert parse_command(BotState.WELCOME, "soy cliente") == "1"
        assert parse_command(BotState.CLIENT_MENU, "soy cliente") is None

    def test_operator_keywords(self):
        assert parse_command(BotState.CLIENT_MENU, "Operador") == "operator"
        assert parse_command(BotState.CLIENT_MENU, "hablar con un operador") == "operator"


class TestTransitions:
    def test_first_contact_always_welcomes(self):
        decision = transition(BotState.INITIAL, "1")
        assert decision.next_state == BotState.WELCOME
        assert decision.template == "welcome"
        assert decision.handoff is False

    def test_welcome_client(self):
        decision = transition(BotState.WELCOME, "1")
        assert decision.next_state == BotState.CLIENT_MENU
        assert decision.template == "client_menu"
        assert decision.client_type == ClientType.EXISTING

    def test_welcome_prospect(self):
        decision = transition(BotState.WELCOME, "no soy cliente")
        assert decision.next_state == BotState.NON_CLIENT_MENU
        assert decision.template == "prospect_menu"
        assert decision.client_type == ClientType.PROSPECT

    def test_welcome_unrecognized_repeats_welcome(self):
        decision = transition(BotState.WELCOME, "hola")
        assert decision.next_state == BotState.WELCOME
        assert decision.template == "welcome"

    def test_client_menu_billing(self):
        decision = transition(BotState.CLIENT_MENU, "1")
        assert decision.next_state == BotState.CLIENT_BILLING
        assert decision.template == "client_billing"

    def test_client_menu_hours(self):
        assert transition(BotState.CLIENT_MENU, "4").next_state == BotState.CLIENT_HOURS

    @pytest.mark.parametrize("text,template", [("2", "client_support"), ("3", "operator_connecting"), ("asesor", "operator_connecting")])
    def test_client_menu_handoffs(self, text, template):
        decision = transition(BotState.CLIENT_MENU, text)
        assert decision.handoff is True
        assert decision.template == template
        assert decision.next_state == BotState.INITIAL

    def test_prospect_sales_handoff(self):
        decision = transition(BotState.NON_CLIENT_MENU, "2")
        assert decision.handoff is True
        assert decision.template == "sales"

    def test_prospect_info(self):
        assert transition(BotState.NON_CLIENT_MENU, "1").next_state == BotState.PROSPECT_INFO

    def test_leaf_states_escalate(self):
        assert transition(BotState.CLIENT_BILLING, "3").handoff is True
        assert transition(BotState.CLIENT_HOURS, "operador").handoff is True
        assert transition(BotState.PROSPECT_INFO, "2").template == "sales"

    @pytest.mark.parametrize("state", [BotState.CLIENT_MENU, BotState.NON_CLIENT_MENU, BotState.CLIENT_BILLING, BotState.PROSPECT_INFO])
    def test_back_to_welcome(self, state):
        decision = transition(state, "0")
        assert decision.next_state == BotState.WELCOME
        assert decision.template == "welcome"

    def test_unrecognized_reprompts_without_state_change(self):
        decision = transition(BotState.CLIENT_MENU, "tengo 1 problema")
        assert decision.next_state == BotState.CLIENT_MENU
        assert decision.template == "default"
        assert decision.handoff is False

    def test_deterministic(self):
        assert transition(BotState.CLIENT_MENU, "3") == transition(BotState.CLIENT_MENU, "3")


class TestCoerceState:
    def test_known_state(self):
        assert coerce_state("client_menu") == BotState.CLIENT_MENU

    def test_empty_is_initial(self):
        assert coerce_state(None) == BotState.INITIAL

    def test_garbage_raises(self):
        with pytest.raises(UnknownState):
            coerce_state("manager_active")


class TestTemplates:
    def test_every_transition_template_exists(self):
        templates = load_templates()
        for state in BotState:
            for text in ["1", "2", "3", "4", "0", "operador", "???"]:
                assert transition(state, text).template in templates

    def test_closure_notices_exist(self):
        assert "inactividad" in render_template("inactivity_closed")
        assert render_template("operator_closed")

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            render_template("nope")
