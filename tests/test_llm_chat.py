import unittest

from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage

from prompter_live.llm.chat import LangChainChat, _content_text
from prompter_live.llm.prompts import compose_system_prompt


class LangChainChatTests(unittest.IsolatedAsyncioTestCase):
    async def test_stream_yields_deltas_and_records_history(self) -> None:
        model = GenericFakeChatModel(messages=iter([AIMessage(content="Hello there alice")]))
        chat = LangChainChat(model, system_prompt="be kind")

        deltas = [delta async for delta in chat.stream("alice says: hi")]

        self.assertGreater(len(deltas), 1)
        self.assertEqual("".join(deltas), "Hello there alice")
        history = chat.history
        self.assertEqual(len(history), 2)
        self.assertIsInstance(history[0], HumanMessage)
        self.assertEqual(history[0].content, "alice says: hi")
        self.assertEqual(history[1].content, "Hello there alice")

    async def test_history_is_bounded(self) -> None:
        model = GenericFakeChatModel(messages=iter([AIMessage(content="one"), AIMessage(content="two")]))
        chat = LangChainChat(model, system_prompt="", max_history_turns=1)

        async for _ in chat.stream("first"):
            pass
        async for _ in chat.stream("second"):
            pass

        self.assertEqual([m.content for m in chat.history], ["second", "two"])


class ContentHelpersTests(unittest.TestCase):
    def test_content_text_handles_blocks(self) -> None:
        self.assertEqual(_content_text("plain"), "plain")
        self.assertEqual(_content_text(["a", {"type": "text", "text": "b"}, {"type": "image_url"}]), "ab")
        self.assertEqual(_content_text(None), "")

    def test_system_prompt_adds_plain_text_rule(self) -> None:
        prompt = compose_system_prompt("  Be a cheerful host. ", max_reply_chars=200)

        self.assertTrue(prompt.startswith("Be a cheerful host."))
        self.assertIn("plain text", prompt)
        self.assertIn("200 characters", prompt)
        self.assertEqual(compose_system_prompt(""), "Reply in plain text without Markdown formatting or code blocks.")


if __name__ == "__main__":
    unittest.main()
