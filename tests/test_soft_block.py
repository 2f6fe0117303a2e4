import pytest

from fakes import BLOCK_TEXT, FakeRenderer, make_context

from mapcrawl.blocking import CAPTCHA_SELECTORS, detect_soft_block, is_block_text, raise_if_blocked
from mapcrawl.errors import RetryableRequestError, SoftBlockError


class CaptchaRenderer(FakeRenderer):
    def has_element(self, selector):
        return selector == CAPTCHA_SELECTORS[0]


def test_block_text_detection_is_case_insensitive():
    assert is_block_text(BLOCK_TEXT.upper())
    assert not is_block_text("Best pizza in town")
    assert not is_block_text(None)


def test_captcha_element_counts_as_block():
    assert detect_soft_block(CaptchaRenderer()) is True
    assert detect_soft_block(FakeRenderer()) is False


def test_raise_if_blocked_poisons_session_and_counts(tmp_path):
    ctx = make_context(tmp_path, FakeRenderer(blocked=True))
    with pytest.raises(SoftBlockError) as excinfo:
        raise_if_blocked(ctx, "in test")

    assert isinstance(excinfo.value, RetryableRequestError)
    assert ctx.session.bad is True
    assert ctx.stats.soft_blocks == 1


def test_clean_page_passes(tmp_path):
    ctx = make_context(tmp_path, FakeRenderer())
    raise_if_blocked(ctx, "in test")
    assert ctx.session.bad is False
    assert ctx.stats.soft_blocks == 0
