from a11y_llm_fixer.contrast import contrast_ratio
from a11y_llm_fixer.fixer import apply_fixes, extract_colors
from a11y_llm_fixer.schema import ContrastPolicy, Fix
from a11y_llm_fixer.tools import ToolInvoker


def make_fix(original, fixed, type="other", description="fix"):
    return Fix(type=type, description=description, originalCode=original, fixedCode=fixed)


def test_exact_replacement():
    doc = '<p style="color:#777777">x</p>'
    res = apply_fixes(doc, [make_fix("color:#777777", "color:#000000", type="color-contrast")])
    assert "color:#000000" in res.content
    assert "#777777" not in res.content
    assert res.applied_count == 1
    assert res.outcomes[0].strategy == "exact"


def test_exact_replaces_first_occurrence_only():
    doc = "<img src=a.png><img src=a.png>"
    res = apply_fixes(doc, [make_fix("<img src=a.png>", '<img src=a.png alt="A">', type="alt-text")])
    assert res.content == '<img src=a.png alt="A"><img src=a.png>'


def test_background_fallback_replaces_all_occurrences():
    doc = (
        "<style>.a { background-color: #eee; } .b { background-color: #EEE; }</style>"
        '<div style="background-color:#eee">x</div>'
    )
    fix = make_fix(".card { background-color: #eee; }", ".card { background-color: #fff; }", type="color-contrast")
    res = apply_fixes(doc, [fix])
    assert res.applied_count == 1
    assert res.outcomes[0].strategy == "color-fallback"
    assert "#eee" not in res.content.lower()
    assert res.content.count("background-color: #fff") == 2
    assert res.content.count("background-color:#fff") == 1


def test_foreground_fallback_leaves_background_alone():
    doc = "<style>p { color: #999; background-color: #999; }</style>"
    fix = make_fix("span { color: #999 }", "span { color: #333 }", type="color-contrast")
    res = apply_fixes(doc, [fix])
    assert res.content == "<style>p { color: #333; background-color: #999; }</style>"


def test_fallback_does_not_match_longer_values():
    doc = "<style>p { color: #7777ff; }</style>"
    fix = make_fix("h1 { color: #777 }", "h1 { color: #000 }", type="color-contrast")
    res = apply_fixes(doc, [fix])
    assert res.content == doc
    assert res.applied_count == 0


def test_non_color_fix_not_found_is_skipped():
    doc = "<form><input name=q></form>"
    res = apply_fixes(doc, [make_fix("<input id=q>", '<input id=q aria-label="Search">', type="aria")])
    assert res.content == doc
    assert res.applied_count == 0
    assert not res.outcomes[0].applied
    assert res.outcomes[0].reason == "original code not found"


def test_empty_original_code_is_skipped():
    doc = "<p>x</p>"
    res = apply_fixes(doc, [make_fix("", "<h1>Title</h1>", type="heading")])
    assert res.content == doc
    assert res.applied_count == 0


def test_three_fixes_end_to_end():
    doc = (
        "<html><head><style>.muted { color: #aaaaaa; }</style></head>"
        '<body><img src="logo.png"><h3>Intro</h3><p class="muted">hi</p></body></html>'
    )
    fixes = [
        make_fix('<img src="logo.png">', '<img src="logo.png" alt="Company logo">', type="alt-text"),
        make_fix("<h3>Intro</h3>", "<h1>Intro</h1>", type="heading"),
        make_fix(".muted{color:#aaaaaa}", ".muted{color:#595959}", type="color-contrast"),
    ]
    res = apply_fixes(doc, fixes)
    assert res.applied_count == 3
    assert '<img src="logo.png" alt="Company logo">' in res.content
    assert "<h1>Intro</h1>" in res.content
    assert ".muted { color: #595959; }" in res.content
    assert "<h3>" not in res.content


def test_duplicates_applied_independently():
    doc = "<b>x</b><b>x</b>"
    fix = make_fix("<b>x</b>", "<strong>x</strong>")
    res = apply_fixes(doc, [fix, fix, fix])
    assert res.content == "<strong>x</strong><strong>x</strong>"
    assert [o.applied for o in res.outcomes] == [True, True, False]


def test_extract_colors():
    assert extract_colors("p { color: #111; background-color: #fefefe }") == ("#111", "#fefefe")
    assert extract_colors('style="background-color:#000"') == (None, "#000")


def test_failing_contrast_skipped_by_default():
    doc = "<p style=\"color: #777; background-color: #fff\">x</p>"
    fix = make_fix(
        "color: #777; background-color: #fff",
        "color: #cccccc; background-color: #ffffff",
        type="color-contrast",
    )
    res = apply_fixes(doc, [fix], validator=contrast_ratio)
    assert res.content == doc
    assert not res.outcomes[0].applied
    assert "fail" in res.outcomes[0].reason


def test_failing_contrast_applied_with_apply_policy():
    doc = "<p style=\"color: #777; background-color: #fff\">x</p>"
    fix = make_fix(
        "color: #777; background-color: #fff",
        "color: #cccccc; background-color: #ffffff",
        type="color-contrast",
    )
    res = apply_fixes(doc, [fix], validator=contrast_ratio, policy=ContrastPolicy.APPLY)
    assert "color: #cccccc; background-color: #ffffff" in res.content
    assert res.applied_count == 1


def test_passing_contrast_is_applied():
    doc = "<p style=\"color: #777; background-color: #fff\">x</p>"
    fix = make_fix(
        "color: #777; background-color: #fff",
        "color: #000000; background-color: #ffffff",
        type="color-contrast",
    )
    calls = []

    def validator(fg, bg):
        calls.append((fg, bg))
        return contrast_ratio(fg, bg)

    res = apply_fixes(doc, [fix], validator=validator)
    assert calls == [("#000000", "#ffffff")]
    assert res.applied_count == 1


def test_fallback_keeps_property_spelling():
    doc = '<p style="COLOR:#777">x</p><p style="Color :  #777">y</p>'
    fix = make_fix("a { color: #777 }", "a { color: #000 }", type="color-contrast")
    res = apply_fixes(doc, [fix])
    assert res.content == '<p style="COLOR:#000">x</p><p style="Color :  #000">y</p>'


def test_shorthand_colors_are_not_rejected():
    doc = '<p style="color: #999; background-color: #eee">x</p>'
    fix = make_fix(
        "color: #999; background-color: #eee",
        "color: #000; background-color: #fff",
        type="color-contrast",
    )
    res = apply_fixes(doc, [fix], validator=ToolInvoker(None).check_contrast)
    assert res.applied_count == 1
    assert res.content == '<p style="color: #000; background-color: #fff">x</p>'


def test_important_is_ignored_when_measuring():
    doc = "<style>p { color: #777 !important; background-color: #fff }</style>"
    fix = make_fix(
        "color: #777 !important; background-color: #fff",
        "color: #000000 !important; background-color: #ffffff",
        type="color-contrast",
    )
    calls = []

    def validator(fg, bg):
        calls.append((fg, bg))
        return contrast_ratio(fg, bg)

    res = apply_fixes(doc, [fix], validator=validator)
    assert calls == [("#000000", "#ffffff")]
    assert res.applied_count == 1


def test_important_failing_colors_still_skipped():
    doc = "<style>p { color: #777 !important; background-color: #fff }</style>"
    fix = make_fix(
        "color: #777 !important; background-color: #fff",
        "color: #cccccc !important; background-color: #ffffff",
        type="color-contrast",
    )
    res = apply_fixes(doc, [fix], validator=contrast_ratio)
    assert res.content == doc
    assert "fail" in res.outcomes[0].reason
