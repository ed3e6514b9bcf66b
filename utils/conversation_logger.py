import os
import json
from datetime import datetime
from typing import Optional, Dict, Any, List


class ConversationLogger:
    """
    Simple JSONL conversation logger.
    Each line is a JSON object with at least: role, content, timestamp.
    Persisted turns are written as a user line (when the turn had a question)
    followed by an assistant line. Use seed_from_history() after opening a
    conversation so the file holds the stored history plus new turns.
    """

    def __init__(self, log_path: str):
        self.log_path = log_path
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

    def seed_from_history(self, conversation_id: str, history: List[Dict[str, Any]]) -> None:
        """
        Overwrite the log file with a conversation's stored history.
        Subsequent log calls append. Overwrite (not append) so reopening the
        same conversation does not duplicate its history.
        """
        if not history:
            return
        with open(self.log_path, "w", encoding="utf-8") as f:
            for msg in history:
                parts = msg.get("parts") or [{}]
                role = "assistant" if msg.get("role") == "model" else msg.get("role", "user")
                entry: Dict[str, Any] = {
                    "role": role,
                    "content": parts[0].get("text", ""),
                    "timestamp": datetime.now().isoformat(),
                    "metadata": {"conversation_id": conversation_id},
                }
                if msg.get("img"):
                    entry["metadata"]["img"] = msg["img"]
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def log_message(
        self,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None,
    ) -> None:
        """Append a single message to the log file as JSON."""
        entry: Dict[str, Any] = {
            "role": role,
            "content": content,
            "timestamp": timestamp or datetime.now().isoformat(),
        }
        if metadata:
            entry["metadata"] = metadata

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def log_turn(self, conversation_id: str, question: Optional[str], answer: str, img: Optional[str] = None) -> None:
        """Append one persisted turn."""
        metadata: Dict[str, Any] = {"conversation_id": conversation_id}
        if img:
            metadata["img"] = img
        if question:
            self.log_message("user", question, metadata=metadata)
        self.log_message("assistant", answer, metadata={"conversation_id": conversation_id})
