import pytest

from shop_translator.protector import TOKEN_RE, protect, restore

SAMPLES = [
    "<p>Hi<script>x</script></p>",
    "plain text without markup",
    "",
    '<div style="color: red" class="hero"><a href=\'/products/x\' aria-label="Open">Shop now</a></div>',
    "<style>.a{color:red}</style><!-- note --><pre>keep  this</pre><code>x < y</code>",
    '<img src="a.png" alt="A cat"><video><source src="v.mp4" type="video/mp4"></video>',
    "<p>Price: {{ product.price }} {% if sale %}off{% endif %}</p>",
    "<P STYLE = 'margin:0'>Upper case tags</P><EMBED SRC=\"x.swf\">",
    "a < b and c > d",
    "<p>unterminated <script>alert(1)</p>",
    "<!--c-->PROTECTED_STYLE_BLOCK_0__<style>s</style>",
    "<style>a</style>__<b>PROTECTED_COMMENT_1__</b><!--x-->",
]


@pytest.mark.parametrize("text", SAMPLES)
def test_round_trip_is_byte_exact(text):
    masked = protect(text)
    assert restore(masked.text, masked.token_map) == text


def test_script_block_is_masked():
    masked = protect("<p>Hi<script>x</script></p>")
    assert "<script>" not in masked.text
    assert "Hi" in masked.text
    assert list(masked.token_map.values()) == ["<script>x</script>"]
    assert TOKEN_RE.fullmatch(next(iter(masked.token_map)))


def test_attribute_values_masked_with_quotes_kept():
    masked = protect('<a href="/cart" style="color:red">Cart</a>')
    assert "/cart" not in masked.text
    assert "color:red" not in masked.text
    assert 'href="__PROTECTED_URL_' in masked.text
    assert 'style="__PROTECTED_STYLE_ATTR_' in masked.text
    assert "Cart" in masked.text


def test_aria_attribute_masked_whole():
    masked = protect('<button aria-label="Close dialog">X</button>')
    assert "aria-label" not in masked.text
    assert 'aria-label="Close dialog"' in masked.token_map.values()


def test_img_element_with_nested_url_token_restores():
    text = '<img src="/a.png" alt="Red shoe">'
    masked = protect(text)
    assert masked.text.startswith("__PROTECTED_IMG_")
    assert restore(masked.text, masked.token_map) == text


def test_template_placeholders_stay_visible():
    masked = protect("<p>Price: {{ product.price }} USD</p>")
    assert "{{ product.price }}" in masked.text
    assert masked.token_map == {}


def test_tokens_are_unique_per_call():
    masked = protect("<script>a</script><script>b</script><!--c-->")
    assert len(masked.token_map) == 3
    assert len(set(masked.token_map)) == 3


def test_already_protected_text_is_noop():
    text = "<p>__PROTECTED_URL_0__ <script>x</script></p>"
    masked = protect(text)
    assert masked.text == text
    assert masked.token_map == {}


def test_nothing_to_mask_returns_input():
    masked = protect("<p>Hello <b>world</b></p>")
    assert masked.text == "<p>Hello <b>world</b></p>"
    assert masked.token_map == {}


def test_restore_ignores_unknown_text():
    assert restore("no tokens here", {"__PROTECTED_URL_0__": "/x"}) == "no tokens here"
    assert restore("x", {}) == "x"


def test_literal_token_tail_next_to_a_token_is_left_alone():
    text = "<!--c-->PROTECTED_STYLE_BLOCK_0__<style>s</style>"
    masked = protect(text)
    assert masked.token_map == {"__PROTECTED_STYLE_BLOCK_0__": "<style>s</style>", "__PROTECTED_COMMENT_1__": "<!--c-->"}
    assert restore(masked.text, masked.token_map) == text
