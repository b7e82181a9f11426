from interpreter import NULL, Environment, Table, make_num


def test_unset_name_reads_null():
    assert Environment().get("missing") is NULL


def test_default_assignment_updates_visible_binding():
    outer = Environment()
    outer.assign("x", make_num(1))
    inner = Environment(parent=outer)
    inner.assign("x", make_num(2))
    assert outer.get("x").value == 2.0
    assert "x" not in inner.values


def test_default_assignment_creates_in_current_frame():
    outer = Environment()
    inner = Environment(parent=outer)
    inner.assign("y", make_num(3))
    assert inner.values["y"].value == 3.0
    assert not outer.has("y")


def test_local_shadows_outer():
    outer = Environment()
    outer.assign("x", make_num(1))
    inner = Environment(parent=outer)
    inner.assign("x", make_num(5), "local")
    assert inner.get("x").value == 5.0
    assert outer.get("x").value == 1.0


def test_export_inserts_into_owning_frame():
    module = Environment(exports=Table())
    nested = Environment(parent=Environment(parent=module))
    nested.assign("api", make_num(7), "export")
    assert nested.values["api"].value == 7.0
    assert module.exports.entries["api"].value == 7.0
    assert "api" not in module.values


def test_sealed_frame_is_not_updated_by_plain_assignment():
    natives = Environment(sealed=True)
    natives.define("print", make_num(0))
    top = Environment(parent=natives)
    top.assign("print", make_num(1))
    assert natives.values["print"].value == 0.0
    assert top.values["print"].value == 1.0


def test_reassigning_exported_name_refreshes_export_table():
    module = Environment(exports=Table())
    module.assign("v", make_num(1), "export")
    module.assign("v", make_num(2))
    assert module.exports.entries["v"].value == 2.0


def test_reassigning_nested_export_refreshes_owner_table():
    module = Environment(exports=Table())
    inner = Environment(parent=module)
    inner.assign("ready", make_num(1), "export")
    inner.assign("ready", make_num(0))
    assert module.exports.entries["ready"].value == 0.0
    assert inner.values["ready"].value == 0.0
