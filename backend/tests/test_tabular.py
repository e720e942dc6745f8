from stopsync.tabular import (
    fit_row,
    format_value,
    join_row,
    quote_field,
    split_header,
    split_line,
    split_lines,
)


def test_split_line_plain():
    assert split_line("a,b,c") == ["a", "b", "c"]


def test_split_line_keeps_delimiter_inside_quotes():
    assert split_line('1,"Main St, north",x') == ["1", "Main St, north", "x"]


def test_split_line_escaped_quotes_do_not_end_field():
    fields = split_line('"He said ""hi"",x",2')
    assert fields == ['He said "hi",x', "2"]


def test_split_line_empty_fields():
    assert split_line("a,,c,") == ["a", "", "c", ""]


def test_split_line_stray_quote_is_stripped():
    assert split_line('"open,b') == ["open,b"]


def test_split_line_other_delimiter():
    assert split_line('a;"b;c";d', delimiter=";") == ["a", "b;c", "d"]


def test_split_header_trims_but_keeps_quotes():
    assert split_header(' Stop Name ,"Lat" , lon') == ["Stop Name", '"Lat"', "lon"]


def test_split_lines_handles_bom_crlf_and_blank_lines():
    text = "\ufeffa,b\r\n1,2\r\n\r\n3,4\n"
    assert split_lines(text) == ["a,b", "1,2", "3,4"]


def test_split_lines_empty():
    assert split_lines("  \n ") == []


def test_fit_row_pads_and_truncates():
    assert fit_row(["a"], 3) == ["a", "", ""]
    assert fit_row(["a", "b", "c", "d"], 2) == ["a", "b"]


def test_quote_field_comma_and_quote():
    assert quote_field('He said "hi",x') == '"He said ""hi"",x"'


def test_quote_field_leaves_plain_values():
    assert quote_field("Main St") == "Main St"
    assert quote_field(43.65) == "43.65"


def test_format_value():
    assert format_value(None) == ""
    assert format_value(True) == "true"
    assert format_value(False) == "false"
    assert format_value(43.0) == "43"
    assert format_value(-79.3832) == "-79.3832"
    assert format_value(1700000000000) == "1700000000000"
    assert format_value(["a", "b"]) == '["a", "b"]'


def test_join_row():
    assert join_row(["1", "a,b", None, 2.5]) == '1,"a,b",,2.5'
