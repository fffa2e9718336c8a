"""Streamlit chat interface for the multi-provider gateway.

Thin client: all model access goes through the FastAPI backend. This file handles:
  - ChatStore lifetime in st.session_state, snapshot restore/save
  - Provider/model selection and the encrypted API-key manager
  - Conversation list (new / switch / delete)
  - Streaming POST /api/chat with live tool-call status lines
"""

import os
import time

import requests
import streamlit as st

from backend.core import vault
from backend.core.models import ASSISTANT_ROLE, USER_ROLE, ChatMessage
from backend.core.providers import PROVIDERS, ProviderId
from frontend.client import ChatClientError, ChatTurn, send
from frontend.store import ChatStore, SnapshotFile

API_URL = os.environ.get("API_URL", "http://localhost:8000")
HEALTH_ENDPOINT = f"{API_URL}/health"

st.set_page_config(page_title="Chat", layout="centered")

st.markdown("""
<style>
    .stApp {
        max-width: 900px;
        margin: 0 auto;
    }
    .stChatMessage {
        padding: 0.75rem 1rem;
    }
    .status-badge {
        display: inline-block;
        padding: 2px 8px;
        border-radius: 12px;
        font-size: 0.75rem;
        font-weight: 600;
    }
    .status-ok { background: #d4edda; color: #155724; }
    .status-err { background: #f8d7da; color: #721c24; }
</style>
""", unsafe_allow_html=True)


def init_session():
    """Initialize session state on first load."""
    if "snapshot_file" not in st.session_state:
        st.session_state.snapshot_file = SnapshotFile()
    if "store" not in st.session_state:
        st.session_state.store = ChatStore.restore(st.session_state.snapshot_file.load())
    if "reveal_key" not in st.session_state:
        st.session_state.reveal_key = False


def persist(store: ChatStore):
    try:
        st.session_state.snapshot_file.save(store.snapshot())
    except OSError as e:
        st.warning(f"[WARN] Could not save settings: {e}")


def render_message(msg: ChatMessage):
    """Render a single chat message with its tool-call status lines."""
    with st.chat_message(msg.role):
        for call in msg.tool_calls:
            status = "[OK]" if call.result is not None else "[...]"
            st.caption(f"{status} {call.tool_name}({call.arguments})")
        st.markdown(msg.content or "")


def model_selector(store: ChatStore):
    provider_ids = [p.value for p in PROVIDERS]
    current = store.state.current_provider
    provider = st.selectbox(
        "Provider",
        provider_ids,
        index=provider_ids.index(current) if current in provider_ids else 0,
        format_func=lambda p: PROVIDERS[ProviderId(p)].display_name,
    )
    models = list(PROVIDERS[ProviderId(provider)].supported_models)
    if provider != current:
        store.set_provider(provider)
        store.set_model(models[0])
        persist(store)

    current_model = store.state.current_model
    model = st.selectbox("Model", models, index=models.index(current_model) if current_model in models else 0)
    if model != current_model:
        store.set_model(model)
        persist(store)


def key_manager(store: ChatStore):
    provider = store.state.current_provider
    material = store.state.api_keys.get(provider)

    if material:
        st.code(vault.mask(material, reveal=st.session_state.reveal_key), language=None)
        col_show, col_remove = st.columns(2)
        if col_show.button("Hide" if st.session_state.reveal_key else "Show", use_container_width=True):
            st.session_state.reveal_key = not st.session_state.reveal_key
            st.rerun()
        if col_remove.button("Remove key", use_container_width=True):
            store.remove_api_key(provider)
            persist(store)
            st.rerun()
        return

    new_key = st.text_input(f"{provider} API Key", type="password")
    if st.button("Save key", use_container_width=True) and new_key.strip():
        store.set_api_key(provider, vault.encrypt(new_key.strip()))
        persist(store)
        st.rerun()
    if provider == ProviderId.GOOGLE.value:
        st.caption("Without a key the server's default Gemini key is used, if configured.")


def conversation_list(store: ChatStore):
    if st.button("[NEW] New conversation", use_container_width=True):
        store.set_current_conversation(None)
        st.rerun()

    for conversation in store.state.conversations:
        active = conversation.id == store.state.current_conversation_id
        col_title, col_delete = st.columns([5, 1])
        label = f"**{conversation.title}**" if active else conversation.title
        if col_title.button(label, key=f"open-{conversation.id}", use_container_width=True):
            store.set_current_conversation(conversation.id)
            st.rerun()
        if col_delete.button("x", key=f"delete-{conversation.id}"):
            store.delete_conversation(conversation.id)
            st.rerun()


def send_message(store: ChatStore, user_input: str):
    """Stream one assistant turn, rendering deltas as they arrive."""
    turn = ChatTurn.from_store(store, api_url=API_URL)

    with st.chat_message(USER_ROLE):
        st.markdown(user_input)

    with st.chat_message(ASSISTANT_ROLE):
        placeholder = st.empty()
        text = ""
        with st.status("Generating...", expanded=False) as status:
            try:
                start_time = time.monotonic()
                for event in send(turn, store, user_input):
                    kind = event.get("type")
                    if kind == "text-delta":
                        text += event.get("delta", "")
                        placeholder.markdown(text + " |")
                    elif kind == "tool-call":
                        status.write(f"[SYS] Running tool: **{event.get('toolName')}**")
                    elif kind == "tool-result":
                        status.write(f"[OK] Finished: **{event.get('toolName')}**")
                latency_ms = int((time.monotonic() - start_time) * 1000)
                status.update(label=f"[TIME] {latency_ms}ms", state="complete")
            except ChatClientError as e:
                status.update(label="Error", state="error")
                st.error(f"[ERROR] {e.message}")
            except requests.Timeout:
                status.update(label="Timeout", state="error")
                st.error("[TIMEOUT] Request timed out.")
            except requests.ConnectionError:
                status.update(label="Connection Error", state="error")
                st.error("[DISCONNECT] Cannot connect to the backend. Is the API server running?")
        placeholder.markdown(text)


def main():
    """Run the Streamlit chat application."""
    init_session()
    store: ChatStore = st.session_state.store

    api_status = "offline"
    try:
        api_status = requests.get(HEALTH_ENDPOINT, timeout=3).json().get("status", "unknown")
    except requests.RequestException:
        pass

    st.title("Chat")
    conversation = store.active_conversation()
    st.caption(conversation.title if conversation else "New conversation")

    with st.sidebar:
        if api_status == "healthy":
            st.markdown('<span class="status-badge status-ok">* API Healthy</span>', unsafe_allow_html=True)
        elif api_status == "degraded":
            st.markdown('<span class="status-badge status-err">* API Degraded</span>', unsafe_allow_html=True)
        else:
            st.markdown('<span class="status-badge status-err">* API Offline</span>', unsafe_allow_html=True)

        st.markdown("### Model")
        model_selector(store)

        st.divider()
        st.markdown("### API Key")
        key_manager(store)

        st.divider()
        st.markdown("### Conversations")
        conversation_list(store)

    if conversation:
        for msg in conversation.messages:
            render_message(msg)

    if user_input := st.chat_input("Send a message..."):
        send_message(store, user_input)


if __name__ == "__main__":
    main()
