import pytest

from archlens.complexity import average_score, score_function, score_functions, score_tokens
from archlens.model import ComplexityItem, Token
from archlens.rust_parse import parse_rust_file

from conftest import parse


def score(body: str) -> int:
	parsed = parse_rust_file("src/lib.rs", "fn f() { " + body + " }\n")
	return score_function(parsed.functions[0]).score


def words(text: str):
	return [Token("ident" if w[0].isalnum() or w[0] == "_" else "punct", w, 1) for w in text.split()]


@pytest.mark.parametrize(
	"body, expected",
	[
		("let x = 1; x + 2", 1),
		("if x > 0 { 1 } else { 0 }", 2),
		("if a && b || c { }", 4),
		("if a { } else if b { } else { }", 3),
		("if x > 0 { while x < 10 { } }", 4),
		("for i in 0..n { loop { break; } }", 4),
		("match x { 1 => a(), 2 => b(), _ => c() }", 3),
		("match x { n if n > 0 && n < 5 => 1, _ => 0 }", 5),
		("if ok { match y { A => 1, B => 2 } }", 4),
		("let v = [1, 2]; call(|a| { a + 1 });", 1),
		("let s = \"if { match\"; s", 1),
	],
)
def test_score_function_body(body, expected):
	assert score(body) == expected


def test_score_function_uses_body_and_span():
	parsed = parse(
		"src/lib.rs",
		"""
		fn helper(x: i32) -> i32 {
		    if x > 0 { x } else { -x }
		}
		fn plain() {}
		""",
	)
	items = score_functions([parsed])
	assert [(i.function_name, i.score) for i in items] == [("helper", 2), ("plain", 1)]
	assert items[0].line_start == 1
	assert items[0].line_end == 3
	assert score_function(parsed.functions[1]).file_path == "src/lib.rs"


def test_unterminated_match_still_counts_arms():
	assert score_tokens(words("match x { A => 1 , B => 2 , C => 3")) == 3


def test_average_score():
	assert average_score([]) == 0.0
	items = [
		ComplexityItem(function_name="a", file_path="a.rs", score=1, line_start=1, line_end=1),
		ComplexityItem(function_name="b", file_path="a.rs", score=4, line_start=2, line_end=2),
	]
	assert average_score(items) == 2.5
