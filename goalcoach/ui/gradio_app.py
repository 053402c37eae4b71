import gradio as gr
from goalcoach import config
from goalcoach.core.errors import CoachError
from goalcoach.core.models import GoalDecision, Phase
from goalcoach.core.proposals import strip_marker
from goalcoach.core.session import CoachSession
from goalcoach.db.store import SupabaseStore
from goalcoach.utils.logging import log

# Check version
major_version = int(gr.__version__.split('.')[0])
print(f"Gradio Version: {gr.__version__}")

# Gradio 6 dropped the tuple format, older versions need it asked for
CHATBOT_KWARGS = {"type": "messages"} if major_version < 6 else {}

_store = None


def get_store():
    global _store
    if _store is None:
        _store = SupabaseStore()
    return _store


def chat_history(session):
    if session is None or session.transcript is None:
        return []
    return [{"role": t.speaker.value, "content": strip_marker(t.text)} for t in session.transcript.turns]


def economy_markdown(session):
    if session is None:
        return ""
    e = session.economy
    return f"**Level {e.level}** · {e.total_experience} XP · 🔥 {e.daily_streak} day streak"


def goals_markdown(session):
    if session is None:
        return ""
    goals = session.sync.goals()
    if not goals:
        return "_No active goals yet._"
    lines = []
    for g in goals:
        due = f" (due {g.deadline:%b %d})" if g.deadline else ""
        overdue = " ⚠ overdue" if g.is_overdue() else ""
        lines.append(f"- **{g.difficulty.value}** · {g.experience_value} XP · {g.description}{due}{overdue}")
    return "\n".join(lines)


def render(session, status="", message=None):
    """
    Everything the page shows, in the order of the outputs list in create_demo().
    """
    if session is not None and session.notice and not status:
        status = f"⚠ {session.notice}"
        session.notice = None

    pending = session is not None and session.pending_goal is not None
    can_type = session is not None and session.accepts_free_text()
    conversations = []
    goal_choices = []
    if session is not None:
        try:
            conversations = [(c.get("title") or "Untitled", c["id"]) for c in session.list_conversations()]
        except CoachError as e:
            log("UI", f"Could not list conversations: {e}", "WARNING")
        goal_choices = [(g.description[:60], g.id) for g in session.sync.goals()]

    phase = session.phase.value if session is not None and session.transcript is not None else "-"
    return (
        session,
        chat_history(session),
        status,
        economy_markdown(session),
        goals_markdown(session),
        f"Phase: `{phase}`",
        gr.update(visible=pending),
        gr.update(interactive=can_type) if message is None else gr.update(interactive=can_type, value=message),
        gr.update(choices=conversations),
        gr.update(choices=goal_choices, value=None),
    )


def open_session(account_id, user_name):
    """
    Loads the account's economy and goals and starts a fresh conversation.
    """
    if not account_id or account_id.strip() == "":
        return render(None, "Please enter a User ID to start.")

    try:
        store = get_store()
    except ValueError as e:
        # missing Supabase credentials
        return render(None, f"Error: {e}")

    session = CoachSession(store, account_id.strip(), user_name=(user_name or "").strip() or None)
    try:
        session.start()
        session.start_conversation()
    except CoachError as e:
        return render(None, f"Error: {e.message}")
    return render(session, f"✓ Loaded account {session.account_id}.")


def new_conversation(session):
    if session is None:
        return render(None, "⚠ Please load a User ID first.")
    try:
        session.start_conversation()
    except CoachError as e:
        return render(session, f"Error: {e.message}")
    return render(session, "✓ New conversation started.")


def load_conversation(session, conversation_id):
    if session is None or not conversation_id:
        return render(session)
    try:
        session.load_conversation(conversation_id)
    except CoachError as e:
        return render(session, f"Error: {e.message}")
    return render(session, f"✓ Loaded conversation ({session.phase.value}).")


def end_conversation(session):
    return render_after(session, lambda: session.end_conversation())


def process_message(user_message, session):
    return render_after(session, lambda: session.send_message(user_message), clear_message=True)


def accept_goal(session):
    return render_after(session, lambda: session.respond_to_goal(GoalDecision.ACCEPT))


def decline_goal(session):
    return render_after(session, lambda: session.respond_to_goal(GoalDecision.DECLINE))


def render_after(session, action, clear_message=False):
    if session is None:
        return render(None, "⚠ Please load a User ID first.")
    try:
        action()
    except CoachError as e:
        # keep the typed text so it can be resent
        return render(session, f"⚠ {e.message}")
    status = "✓ Conversation concluded. Start a new one any time." if session.phase is Phase.CONCLUDED else ""
    return render(session, status, message="" if clear_message else None)


def complete_goal(session, goal_id, justification):
    if session is None:
        return render(None, "⚠ Please load a User ID first.") + ("",)
    if not goal_id:
        return render(session, "⚠ Pick a goal to complete.") + (justification,)
    try:
        outcome = session.complete_goal(goal_id, justification)
    except CoachError as e:
        return render(session, f"⚠ {e.message}") + (justification,)

    if not outcome.verified:
        return render(session, f"✗ Not verified yet: {outcome.feedback}") + (justification,)
    return render(session, f"✓ +{outcome.experience_awarded} XP! {outcome.feedback}") + ("",)


def sync_tick(session):
    if session is None:
        return render(None)
    session.sync.tick()
    return render(session)


def create_demo():
    with gr.Blocks(title="AI Coach") as demo:
        gr.Markdown("# AI Coach")
        gr.Markdown("Enter your User ID to load your goals and start a conversation.")

        session_state = gr.State(value=None)

        with gr.Row():
            user_id_input = gr.Textbox(label="User ID", placeholder="Enter your account ID...")
            user_name_input = gr.Textbox(label="Name (optional)")
            load_btn = gr.Button("Load", variant="primary")
        status_text = gr.Textbox(label="Status", interactive=False)

        with gr.Row():
            with gr.Column(scale=3):
                with gr.Row():
                    conversation_picker = gr.Dropdown(label="Past conversations", choices=[])
                    new_btn = gr.Button("New conversation")
                    end_btn = gr.Button("End conversation")
                phase_text = gr.Markdown()
                chatbot = gr.Chatbot(label="Conversation", height=400, **CHATBOT_KWARGS)
                with gr.Row(visible=False) as goal_row:
                    accept_btn = gr.Button("Accept", variant="primary")
                    decline_btn = gr.Button("Decline")
                msg_input = gr.Textbox(label="Your message", placeholder="Type your message here...")
                send_btn = gr.Button("Send", variant="primary")

            with gr.Column(scale=2):
                economy_text = gr.Markdown()
                gr.Markdown("### Active goals")
                goals_text = gr.Markdown()
                goal_picker = gr.Dropdown(label="Goal to complete", choices=[])
                justification_input = gr.Textbox(label="What did you do?", lines=3)
                complete_btn = gr.Button("Complete goal", variant="secondary")

        outputs = [session_state, chatbot, status_text, economy_text, goals_text, phase_text,
                   goal_row, msg_input, conversation_picker, goal_picker]

        load_btn.click(fn=open_session, inputs=[user_id_input, user_name_input], outputs=outputs)
        new_btn.click(fn=new_conversation, inputs=[session_state], outputs=outputs)
        end_btn.click(fn=end_conversation, inputs=[session_state], outputs=outputs)
        conversation_picker.input(fn=load_conversation, inputs=[session_state, conversation_picker], outputs=outputs)
        send_btn.click(fn=process_message, inputs=[msg_input, session_state], outputs=outputs)
        msg_input.submit(fn=process_message, inputs=[msg_input, session_state], outputs=outputs)
        accept_btn.click(fn=accept_goal, inputs=[session_state], outputs=outputs)
        decline_btn.click(fn=decline_goal, inputs=[session_state], outputs=outputs)
        complete_btn.click(
            fn=complete_goal,
            inputs=[session_state, goal_picker, justification_input],
            outputs=outputs + [justification_input],
        )

        # Cross-device reconciliation while the page is open
        gr.Timer(config.SYNC_INTERVAL_SECONDS).tick(fn=sync_tick, inputs=[session_state], outputs=outputs)
    return demo
