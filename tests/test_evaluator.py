"""
Evaluator tests: scoping, control flow, types, matching and errors.
Programs are run end to end through the Runtime with the mock provider.
"""
import pytest

from gentlang.errors import GentTypeError, NoMatchingArm, RuntimeGentError


def output(run_program, src):
    return run_program(src).console


class TestBasics:
    """Values, operators and printing."""

    def test_arithmetic_and_display(self, run_program):
        assert output(run_program, """
        println(1 + 2 * 3)
        println(7 / 2)
        println(6 / 3)
        println(7 % 3)
        println(-4 + 1)
        """) == ["7", "3.5", "2", "1", "-3"]

    def test_string_concatenation_and_interpolation(self, run_program):
        assert output(run_program, """
        let name = "Ada"
        let n = 3
        println("Hello " + name + "!")
        println("${name} has ${n * 2} items")
        println("count: " + n)
        """) == ["Hello Ada!", "Ada has 6 items", "count: 3"]

    def test_display_of_composites(self, run_program):
        assert output(run_program, """
        println([1, "a", true, null])
        println({ a: 1, b: "x" })
        """) == ['[1, "a", true, null]', '{a: 1, b: "x"}']

    def test_equality_is_deep_and_typed(self, run_program):
        assert output(run_program, """
        println([1, { a: 2 }] == [1, { a: 2 }])
        println(1 == true)
        println("1" == 1)
        println(null == null)
        """) == ["true", "false", "false", "true"]

    def test_logical_operators_short_circuit(self, run_program):
        assert output(run_program, """
        fn boom() { return 1 / 0 }
        println(false && boom())
        println(true || boom())
        println(!0)
        """) == ["false", "true", "true"]

    def test_builtins(self, run_program):
        assert output(run_program, """
        println(len("abc"), len([1, 2]))
        println(typeOf(1), typeOf("s"), typeOf([]), typeOf({}), typeOf(null))
        println(num("42") + 1, str(5) + "!")
        println(toJson({ a: [1, 2] }))
        """) == ["3 2", "number string array object null", "43 5!", '{"a": [1, 2]}']

    def test_division_by_zero(self, run_program):
        with pytest.raises(RuntimeGentError, match="Division by zero"):
            run_program("let x = 1 / 0")

    def test_type_error_on_bad_operands(self, run_program):
        with pytest.raises(GentTypeError, match="not supported"):
            run_program("let x = [1] - 1")


class TestScoping:
    """Lexical scopes, closures and assignment."""

    def test_block_scope_shadowing(self, run_program):
        assert output(run_program, """
        let x = 1
        if true {
            let x = 2
            println(x)
        }
        println(x)
        """) == ["2", "1"]

    def test_assignment_updates_enclosing_scope(self, run_program):
        assert output(run_program, """
        let total = 0
        for n in [1, 2, 3] { total = total + n }
        println(total)
        """) == ["6"]

    def test_assignment_to_undeclared_variable(self, run_program):
        with pytest.raises(RuntimeGentError, match="undeclared variable 'y'"):
            run_program("y = 1")

    def test_undefined_variable(self, run_program):
        with pytest.raises(RuntimeGentError, match="Undefined variable 'missing'"):
            run_program("println(missing)")

    def test_closures_capture_environment(self, run_program):
        assert output(run_program, """
        fn adder(n) { return x => x + n }
        let add5 = adder(5)
        println(add5(10))
        """) == ["15"]

    def test_functions_are_hoisted(self, run_program):
        assert output(run_program, """
        println(square(4))
        fn square(x: number) -> number { return x * x }
        """) == ["16"]

    def test_recursion(self, run_program):
        assert output(run_program, """
        fn fact(n) { if n <= 1 { return 1 } return n * fact(n - 1) }
        println(fact(10))
        """) == ["3628800"]

    def test_tool_body_cannot_assign_outer_variable(self, run_program):
        with pytest.raises(RuntimeGentError, match="Cannot assign to 'counter' from inside a tool body"):
            run_program("""
            let counter = 0
            tool bump() { counter = counter + 1 }
            bump()
            """)

    def test_tool_body_can_read_outer_variable(self, run_program):
        assert output(run_program, """
        let greeting = "hi"
        tool greet(name: string) { return greeting + " " + name }
        println(greet("bob"))
        """) == ["hi bob"]


class TestControlFlow:

    def test_if_else_chain(self, run_program):
        assert output(run_program, """
        fn grade(n) {
            if n >= 90 { return "A" } else if n >= 80 { return "B" } else { return "C" }
        }
        println(grade(95), grade(85), grade(10))
        """) == ["A B C"]

    def test_while_with_break_and_continue(self, run_program):
        assert output(run_program, """
        let i = 0
        let seen = []
        while true {
            i = i + 1
            if i == 2 { continue }
            if i > 4 { break }
            seen.push(i)
        }
        println(seen)
        """) == ["[1, 3, 4]"]

    def test_for_over_object_and_index(self, run_program):
        assert output(run_program, """
        for k, v in { a: 1, b: 2 } { println(k + "=" + v) }
        for i, ch in "xy" { println(i, ch) }
        """) == ["a=1", "b=2", "0 x", "1 y"]

    def test_empty_blocks(self, run_program):
        assert output(run_program, """
        let n = 0
        if n > 0 { }
        if n == 0 {} else { println("no") }
        while false {}
        for x in [1, 2] { }
        fn nothing() {}
        println(nothing())
        """) == ["null"]

    def test_for_over_non_iterable(self, run_program):
        with pytest.raises(GentTypeError, match="Cannot iterate over number"):
            run_program("for x in 5 { }")

    def test_break_outside_loop(self, run_program):
        with pytest.raises(RuntimeGentError, match="outside of a loop"):
            run_program("fn f() { break }\nf()")


class TestTypes:
    """Annotations, structs and enums."""

    def test_let_annotation_mismatch(self, run_program):
        with pytest.raises(GentTypeError, match="variable 'x'"):
            run_program('let x: number = "five"')

    def test_parameter_and_return_checks(self, run_program):
        with pytest.raises(GentTypeError, match="parameter 'n' of half"):
            run_program('fn half(n: number) -> number { return n / 2 }\nhalf("x")')
        with pytest.raises(GentTypeError, match="return value of f"):
            run_program('fn f() -> string { return 1 }\nf()')

    def test_struct_construction(self, run_program):
        assert output(run_program, """
        struct Point { x: number, y: number }
        let p = Point({ x: 1, y: 2 })
        println(p.x + p.y)
        println(p)
        println(typeOf(p))
        """) == ["3", "Point { x: 1, y: 2 }", "Point"]

    def test_struct_missing_field(self, run_program):
        with pytest.raises(GentTypeError, match="missing required field"):
            run_program("struct P { x: number }\nlet p = P({})")

    def test_enum_variants_and_methods(self, run_program):
        assert output(run_program, """
        enum Status { Active, Failed(reason: string) }
        let a = Status.Active
        let f = Status.Failed("disk full")
        println(a, f)
        println(f.reason, f.data(0), f.variant())
        println(a.is(Status.Active), f.is(Status.Active))
        """) == [
            "Status.Active Status.Failed(\"disk full\")",
            "disk full disk full Failed",
            "true false",
        ]

    def test_variant_arity_checked(self, run_program):
        with pytest.raises(GentTypeError, match="expects 1 values, got 2"):
            run_program('enum E { V(string) }\nlet v = E.V("a", "b")')


class TestMatch:

    def test_match_on_variants_with_bindings(self, run_program):
        assert output(run_program, """
        enum Shape { Circle(radius: number), Rect(w: number, h: number), Empty }
        fn area(s) {
            return match s {
                Shape.Circle(r) => 3 * r * r,
                Shape.Rect(w, h) => w * h,
                _ => 0
            }
        }
        println(area(Shape.Circle(2)), area(Shape.Rect(2, 5)), area(Shape.Empty))
        """) == ["12 10 0"]

    def test_named_bindings_use_field_names(self, run_program):
        assert output(run_program, """
        enum Pair { Of(first: string, second: string) }
        let r = match Pair.Of("a", "b") { Pair.Of(second, first) => second + first }
        println(r)
        """) == ["ba"]

    def test_match_literals_and_block_body(self, run_program):
        assert output(run_program, """
        let label = match 2 {
            1 => "one",
            2 => {
                let s = "tw"
                s + "o"
            },
            _ => "many"
        }
        println(label)
        """) == ["two"]

    def test_wildcard_after_arm_without_comma(self, run_program):
        assert output(run_program, """
        enum Level { Low, High }
        fn describe(l) {
            return match l {
                Level.High => "urgent"
                _ => "later"
            }
        }
        println(describe(Level.High), describe(Level.Low))
        """) == ["urgent later"]

    def test_no_matching_arm(self, run_program):
        with pytest.raises(NoMatchingArm, match="No match arm"):
            run_program('let x = match 3 { 1 => "one" }')


class TestTryCatch:
    """Runtime errors are catchable and bound as error objects."""

    def test_catch_runtime_error(self, run_program):
        assert output(run_program, """
        try {
            let x = [1, 2][5]
        } catch e {
            println(e.kind, e.message)
        }
        """) == ["RuntimeError Index 5 out of bounds for length 2"]

    def test_no_matching_arm_is_catchable(self, run_program):
        assert output(run_program, """
        try {
            let v = match "z" { "a" => 1 }
        } catch (err) {
            println(err.kind)
        }
        """) == ["NoMatchingArm"]

    def test_code_after_catch_continues(self, run_program):
        assert output(run_program, """
        try { println(undefined_thing) } catch e { println("caught") }
        println("after")
        """) == ["caught", "after"]


def test_top_level_return_stops_program(run_program):
    rt = run_program("""
    println("before")
    return 42
    println("after")
    """)
    assert rt.console == ["before"]
