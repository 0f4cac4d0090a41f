"""Tests for CompileUnit preparation, command lines, and the compile pipeline."""

import json

import pytest

from cbuild.build.build_context import BuildDefaults
from cbuild.build.build_profiles import BuildMode, BuildType
from cbuild.build.compile_unit import CBUILD_DEFINE, CompileUnit
from cbuild.errors import ConfigurationError, ToolInvocationError


def make_unit(tmp_path, sources, name="app", build_type=BuildType.EXECUTABLE):
    """Create a unit whose sources live in tmp_path/src."""
    src_dir = tmp_path / "src"
    src_dir.mkdir(exist_ok=True)
    unit = CompileUnit(name)
    unit.set_build_type(build_type)
    unit.set_target_path(tmp_path / "bin")
    for file_name, content in sources.items():
        path = src_dir / file_name
        path.write_text(content)
        unit.add_source_file(path)
    return unit


def rerun(unit, defaults, **kwargs):
    """Compile a fresh copy of the unit, as a new cbuild invocation would."""
    fresh = CompileUnit(unit.name)
    fresh.__dict__.update({k: v for k, v in unit.__dict__.items() if k not in ("cache", "prepared", "built", "linked")})
    fresh.compile(defaults, **kwargs)
    return fresh


class TestConfiguration:
    """Test add/remove/set helpers."""

    def test_add_and_remove_compiler_flags(self):
        """Test flags can be added and removed by value."""
        unit = CompileUnit("app")
        unit.add_compiler_flag("-DNDEBUG")
        unit.add_compiler_flags(["-g", "-std=c++17"])
        assert unit.compiler_flags == ["-DNDEBUG", "-g", "-std=c++17"]

        unit.remove_compiler_flag("-g")

        assert unit.compiler_flags == ["-DNDEBUG", "-std=c++17"]

    def test_source_extension_normalized(self):
        """Test extensions gain a leading dot."""
        unit = CompileUnit("app")
        unit.add_source_extension("cc")
        unit.add_source_extension(".cpp")

        assert unit.source_extensions == [".cc", ".cpp"]

        unit.remove_source_extension("cc")
        assert unit.source_extensions == [".cpp"]

    def test_target_defaults(self):
        """Test the target file defaults to the unit name."""
        unit = CompileUnit("tool")
        assert unit.target_file == "tool"
        assert not unit.built

    def test_set_build_type_from_string(self):
        """Test build types can be given as their project-file strings."""
        unit = CompileUnit("api")
        unit.set_build_type("shared-library")
        unit.set_build_mode("Debug")

        assert unit.build_type is BuildType.SHARED_LIBRARY
        assert unit.build_mode is BuildMode.DEBUG

    def test_invalid_build_type(self):
        """Test an unknown build type is a configuration error."""
        with pytest.raises(ConfigurationError, match="Invalid build type"):
            CompileUnit("x").set_build_type("plugin")

    def test_describe_lists_settings(self):
        """Test describe() mentions the unit's key settings."""
        unit = CompileUnit("app")
        unit.set_build_type(BuildType.EXECUTABLE)
        unit.add_dependency("api")

        text = unit.describe()

        assert "Unit Name" in text and "app" in text
        assert "executable" in text
        assert "['api']" in text


class TestPrepare:
    """Test merging defaults, validation, and source resolution."""

    def test_objects_pair_with_sources(self, tmp_path, defaults):
        """Test object i is derived from source i."""
        unit = make_unit(tmp_path, {"b.cc": "", "a.cpp": "", "c.c": ""})

        prepared = unit.prepare(defaults)

        assert len(prepared.sources) == len(prepared.objects) == 3
        for src, obj in zip(prepared.sources, prepared.objects):
            assert obj == defaults.object_destination / f"{src.stem}.o"
        assert unit.object_files == list(prepared.objects)

    def test_defaults_fill_unset_fields(self, tmp_path):
        """Test compiler and object destination come from defaults when unset."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        unit.add_include_path(tmp_path / "own")
        defaults = BuildDefaults(
            compiler="clang++",
            object_destination=tmp_path / "obj",
            include_paths=(tmp_path / "shared",),
            build_mode=BuildMode.DEBUG,
        )

        prepared = unit.prepare(defaults)

        assert prepared.compiler == "clang++"
        assert prepared.object_destination == tmp_path / "obj"
        assert prepared.include_paths == (tmp_path / "own", tmp_path / "shared")
        assert prepared.build_mode is BuildMode.DEBUG

    def test_unit_compiler_wins_over_default(self, tmp_path, defaults):
        """Test a unit's own compiler is kept."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        unit.set_compiler("g++-13")

        assert unit.prepare(defaults).compiler == "g++-13"

    def test_default_build_mode_overrides_unit(self, tmp_path, defaults):
        """Test a project-wide build mode overrides the unit's."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        unit.set_build_mode(BuildMode.DEBUG)

        assert unit.prepare(defaults).build_mode is BuildMode.RELEASE

    def test_prepare_does_not_modify_configuration(self, tmp_path, defaults):
        """Test preparing twice gives the same result and leaves lists untouched."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        defaults = defaults.with_overrides(include_paths=(tmp_path / "inc",))

        first = unit.prepare(defaults)
        second = unit.prepare(defaults)

        assert first == second
        assert unit.include_paths == []

    def test_missing_build_mode(self, tmp_path, defaults):
        """Test a unit with no build mode anywhere is rejected."""
        unit = make_unit(tmp_path, {"main.cc": ""})

        with pytest.raises(ConfigurationError, match="Invalid build mode"):
            unit.prepare(defaults.with_overrides(build_mode=None))

    def test_missing_build_type(self, tmp_path, defaults):
        """Test a unit without a build type is rejected."""
        unit = CompileUnit("app")
        unit.add_source_file(tmp_path / "main.cc")

        with pytest.raises(ConfigurationError, match="Invalid build type"):
            unit.prepare(defaults)

    def test_missing_compiler(self, tmp_path, defaults):
        """Test a unit with no compiler anywhere is rejected."""
        unit = make_unit(tmp_path, {"main.cc": ""})

        with pytest.raises(ConfigurationError, match="No compiler"):
            unit.prepare(defaults.with_overrides(compiler=None))

    def test_missing_object_destination(self, tmp_path, defaults):
        """Test a unit with no object destination anywhere is rejected."""
        unit = make_unit(tmp_path, {"main.cc": ""})

        with pytest.raises(ConfigurationError, match="object file destination"):
            unit.prepare(defaults.with_overrides(object_destination=None))

    def test_empty_target_file(self, tmp_path, defaults):
        """Test an empty target name is rejected."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        unit.set_target_file("")

        with pytest.raises(ConfigurationError, match="No target filename"):
            unit.prepare(defaults)

    def test_no_sources(self, tmp_path, defaults):
        """Test a unit that resolves to no sources is rejected."""
        unit = make_unit(tmp_path, {})

        with pytest.raises(ConfigurationError, match="No source files"):
            unit.prepare(defaults)

    def test_duplicate_object_path(self, tmp_path, defaults):
        """Test two sources with the same stem cannot share an object file."""
        unit = make_unit(tmp_path, {"util.cc": ""})
        other = tmp_path / "lib"
        other.mkdir()
        (other / "util.cc").write_text("")
        unit.add_source_file(other / "util.cc")

        with pytest.raises(ConfigurationError, match="both compile to"):
            unit.prepare(defaults)

    def test_glob_finds_sources_sorted(self, tmp_path, defaults):
        """Test globbing scans each source path for each extension."""
        unit = make_unit(tmp_path, {})
        for name in ("b.cc", "a.cc", "notes.txt"):
            (tmp_path / "src" / name).write_text("")
        unit.add_source_path(tmp_path / "src")
        unit.add_source_extension("cc")
        unit.enable_source_glob(True)

        prepared = unit.prepare(defaults)

        assert [p.name for p in prepared.sources] == ["a.cc", "b.cc"]

    def test_glob_disabled_ignores_source_paths(self, tmp_path, defaults):
        """Test source paths are not scanned unless globbing is enabled."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        (tmp_path / "src" / "extra.cc").write_text("")
        unit.add_source_path(tmp_path / "src")
        unit.add_source_extension("cc")

        assert [p.name for p in unit.prepare(defaults).sources] == ["main.cc"]

    def test_glob_settings_from_defaults(self, tmp_path, defaults):
        """Test the glob toggle and extensions fall back to the defaults."""
        unit = make_unit(tmp_path, {})
        (tmp_path / "src" / "main.cpp").write_text("")
        unit.add_source_path(tmp_path / "src")
        defaults = defaults.with_overrides(source_globbing=True, source_extensions=(".cpp",))

        assert [p.name for p in unit.prepare(defaults).sources] == ["main.cpp"]

    def test_explicit_and_globbed_source_deduplicated(self, tmp_path, defaults):
        """Test a source listed explicitly and matched by the glob appears once."""
        unit = make_unit(tmp_path, {"main.cc": "", "util.cc": ""})
        unit.add_source_path(tmp_path / "src")
        unit.add_source_extension(".cc")
        unit.enable_source_glob(True)

        prepared = unit.prepare(defaults)

        assert [p.name for p in prepared.sources] == ["main.cc", "util.cc"]

    @pytest.mark.parametrize(
        "build_type,expected",
        [
            (BuildType.EXECUTABLE, "app"),
            (BuildType.SHARED_LIBRARY, "libapp.so"),
            (BuildType.STATIC_LIBRARY, "libapp.a"),
        ],
    )
    def test_target_name(self, tmp_path, defaults, build_type, expected):
        """Test the artifact file name for each build type."""
        unit = make_unit(tmp_path, {"main.cc": ""}, build_type=build_type)

        assert unit.prepare(defaults).target == tmp_path / "bin" / expected


class TestCommands:
    """Test generated command lines."""

    def test_commands_require_prepare(self, tmp_path):
        """Test command builders refuse to run on an unprepared unit."""
        unit = make_unit(tmp_path, {"main.cc": ""})

        with pytest.raises(ConfigurationError, match="has not been prepared"):
            unit.compile_command(tmp_path / "main.cc", tmp_path / "main.o")
        with pytest.raises(ConfigurationError, match="has not been prepared"):
            unit.link_command()
        with pytest.raises(ConfigurationError, match="has not been prepared"):
            unit.needs_recompile()

    def test_compile_command(self, tmp_path, defaults):
        """Test flags, the cbuild define, forced includes, and include paths."""
        unit = make_unit(tmp_path, {"main.cc": ""})
        unit.add_compiler_flags(["-O2", "-Wall"])
        unit.add_forced_include(tmp_path / "config.h")
        unit.add_include_path(tmp_path / "inc")
        prepared = unit.prepare(defaults)
        src, obj = prepared.sources[0], prepared.objects[0]

        cmd = unit.compile_command(src, obj)

        assert cmd == [
            "cc", "-c", "-o", str(obj), "-O2", "-Wall", CBUILD_DEFINE,
            "-include", str(tmp_path / "config.h"),
            f"-I{tmp_path / 'inc'}",
            str(src),
        ]

    def test_compile_command_shared_library_adds_fpic(self, tmp_path, defaults):
        """Test shared library objects are position independent."""
        unit = make_unit(tmp_path, {"api.cc": ""}, name="api", build_type=BuildType.SHARED_LIBRARY)
        prepared = unit.prepare(defaults)

        cmd = unit.compile_command(prepared.sources[0], prepared.objects[0])

        assert cmd[-2:] == ["-fPIC", str(prepared.sources[0])]

    def test_link_command_objects_before_libraries(self, tmp_path, defaults):
        """Test objects precede linker flags, library paths, and libraries."""
        unit = make_unit(tmp_path, {"a.cc": "", "b.cc": ""})
        unit.add_linker_flag("-g")
        unit.add_link_library_path(tmp_path / "lib")
        unit.add_link_library("pthread")
        prepared = unit.prepare(defaults)

        cmd = unit.link_command()

        assert cmd == [
            "cc", "-o", str(prepared.target),
            *[str(o) for o in prepared.objects],
            "-g", f"-L{tmp_path / 'lib'}", "-lpthread",
        ]

    def test_link_command_shared(self, tmp_path, defaults):
        """Test shared libraries link with -shared."""
        unit = make_unit(tmp_path, {"api.cc": ""}, name="api", build_type=BuildType.SHARED_LIBRARY)
        prepared = unit.prepare(defaults)

        assert unit.link_command()[:4] == ["cc", "-shared", "-o", str(prepared.target)]

    def test_archive_command(self, tmp_path, defaults):
        """Test static libraries are archived, without linker flags."""
        unit = make_unit(tmp_path, {"api.cc": ""}, name="api", build_type=BuildType.STATIC_LIBRARY)
        unit.add_link_library("m")
        prepared = unit.prepare(defaults.with_overrides(archiver="llvm-ar"))

        assert unit.link_command() == ["llvm-ar", "rcs", str(prepared.target), str(prepared.objects[0])]


class TestCompilePipeline:
    """Test the incremental compile-then-link pipeline."""

    def test_cold_build(self, tmp_path, defaults, fake_toolchain):
        """Test two sources without a cache: two compiles, one link, full cache."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})

        unit.compile(defaults)

        assert fake_toolchain.compiled_sources() == ["a.cc", "b.cc"]
        assert len(fake_toolchain.link_calls) == 1
        assert unit.built and unit.linked
        assert (tmp_path / "bin" / "app").exists()

        data = json.loads(defaults.cache_file_for("app").read_text())
        assert len(data["entries"]) == 2
        for entry in data["entries"]:
            assert entry["source_checksum"] is not None
            assert entry["object_checksum"] is not None

    def test_compile_defines_cbuild(self, tmp_path, defaults, fake_toolchain):
        """Test every compile command carries the cbuild define."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})

        unit.compile(defaults)

        assert CBUILD_DEFINE in fake_toolchain.compile_calls[0]
        assert unit.compiler_flags == []

    def test_nothing_changed_runs_no_tools(self, tmp_path, defaults, fake_toolchain):
        """Test an unchanged unit is up to date without invoking any tool."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        again = rerun(unit, defaults)

        assert fake_toolchain.calls == []
        assert again.built and not again.linked

    def test_comment_only_edit_recompiles_without_relinking(self, tmp_path, defaults, fake_toolchain):
        """Test an edit that leaves the object identical skips the link."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        (tmp_path / "src" / "a.cc").write_text("int a; // explain a\n")
        again = rerun(unit, defaults)

        assert fake_toolchain.compiled_sources() == ["a.cc"]
        assert fake_toolchain.link_calls == []
        assert again.built and not again.linked

    def test_code_edit_recompiles_and_relinks(self, tmp_path, defaults, fake_toolchain):
        """Test a real edit recompiles that source and relinks."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        (tmp_path / "src" / "b.cc").write_text("int b = 2;\n")
        again = rerun(unit, defaults)

        assert fake_toolchain.compiled_sources() == ["b.cc"]
        assert len(fake_toolchain.link_calls) == 1
        assert again.linked

    def test_missing_target_relinks_without_compiling(self, tmp_path, defaults, fake_toolchain):
        """Test a deleted target is relinked even though nothing changed."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})
        unit.compile(defaults)
        (tmp_path / "bin" / "app").unlink()
        fake_toolchain.reset()

        again = rerun(unit, defaults)

        assert fake_toolchain.compile_calls == []
        assert len(fake_toolchain.link_calls) == 1
        assert (tmp_path / "bin" / "app").exists()
        assert again.built

    def test_deleted_object_is_recompiled(self, tmp_path, defaults, fake_toolchain):
        """Test an object removed from disk is rebuilt from its source."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        unit.compile(defaults)
        (defaults.object_destination / "b.o").unlink()
        fake_toolchain.reset()

        rerun(unit, defaults)

        assert fake_toolchain.compiled_sources() == ["b.cc"]
        assert (defaults.object_destination / "b.o").exists()

    def test_added_source_compiles_and_relinks(self, tmp_path, defaults, fake_toolchain):
        """Test a source added since the last run is compiled and linked in."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        new_src = tmp_path / "src" / "n.cc"
        new_src.write_text("int n;\n")
        unit.add_source_file(new_src)
        again = rerun(unit, defaults)

        assert fake_toolchain.compiled_sources() == ["n.cc"]
        assert len(fake_toolchain.link_calls) == 1
        assert again.linked

    def test_removed_source_relinks_without_compiling(self, tmp_path, defaults, fake_toolchain):
        """Test dropping a source relinks the target without its object."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        unit.remove_source_file(tmp_path / "src" / "b.cc")
        rerun(unit, defaults)

        assert fake_toolchain.compile_calls == []
        assert len(fake_toolchain.link_calls) == 1
        assert str(defaults.object_destination / "b.o") not in fake_toolchain.link_calls[0]
        data = json.loads(defaults.cache_file_for("app").read_text())
        assert [e["source"] for e in data["entries"]] == [str(tmp_path / "src" / "a.cc")]

    def test_force_rebuilds_everything(self, tmp_path, defaults, fake_toolchain):
        """Test force ignores the cache, recompiles, and relinks."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        again = rerun(unit, defaults, force=True)

        assert fake_toolchain.compiled_sources() == ["a.cc", "b.cc"]
        assert len(fake_toolchain.link_calls) == 1
        assert again.linked

    def test_force_relink_links_without_compiling(self, tmp_path, defaults, fake_toolchain):
        """Test force_relink relinks an otherwise up-to-date unit."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})
        unit.compile(defaults)
        fake_toolchain.reset()

        again = rerun(unit, defaults, force_relink=True)

        assert fake_toolchain.compile_calls == []
        assert len(fake_toolchain.link_calls) == 1
        assert again.linked

    def test_static_library_is_archived(self, tmp_path, defaults, fake_toolchain):
        """Test static libraries go through the archiver."""
        unit = make_unit(tmp_path, {"api.cc": "int api;\n"}, name="api", build_type=BuildType.STATIC_LIBRARY)

        unit.compile(defaults)

        assert fake_toolchain.link_calls[0][:2] == ["ar", "rcs"]
        assert (tmp_path / "bin" / "libapi.a").exists()

    def test_glob_duplicate_compiled_once(self, tmp_path, defaults, fake_toolchain):
        """Test a source both listed and globbed is compiled once."""
        unit = make_unit(tmp_path, {"main.cc": "int main;\n"})
        unit.add_source_path(tmp_path / "src")
        unit.add_source_extension("cc")
        unit.enable_source_glob(True)

        unit.compile(defaults)

        assert fake_toolchain.compiled_sources() == ["main.cc"]

    def test_compiler_failure_aborts(self, tmp_path, defaults, fake_toolchain):
        """Test a failing compile raises and links nothing."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        fake_toolchain.fail_on = "b.cc"

        with pytest.raises(ToolInvocationError, match="Compilation of") as exc_info:
            unit.compile(defaults)

        assert exc_info.value.returncode == 1
        assert "simulated failure" in exc_info.value.stderr
        assert fake_toolchain.link_calls == []
        assert not unit.built

    def test_failed_run_recovers_next_time(self, tmp_path, defaults, fake_toolchain):
        """Test the run after a failure compiles what is still stale."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})
        fake_toolchain.fail_on = "b.cc"
        with pytest.raises(ToolInvocationError):
            unit.compile(defaults)
        fake_toolchain.fail_on = None
        fake_toolchain.reset()

        again = rerun(unit, defaults)

        assert "b.cc" in fake_toolchain.compiled_sources()
        assert again.built

    def test_linker_failure_aborts(self, tmp_path, defaults, fake_toolchain):
        """Test a failing link raises and leaves the unit unbuilt."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})
        unit.set_target_file("linkme")
        fake_toolchain.fail_on = "linkme"

        with pytest.raises(ToolInvocationError):
            unit.compile(defaults)

        assert not unit.built

    def test_progress_bar(self, tmp_path, defaults, fake_toolchain):
        """Test compiling with a progress bar produces the same result."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n", "b.cc": "int b;\n"})

        unit.compile(defaults, progress=True)

        assert fake_toolchain.compiled_sources() == ["a.cc", "b.cc"]
        assert unit.built


class TestHousekeeping:
    """Test clear_cache and clean."""

    def test_clear_cache_forces_full_rebuild(self, tmp_path, defaults, fake_toolchain):
        """Test clearing the cache makes the next run compile every source."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})
        unit.compile(defaults)

        unit.clear_cache(defaults)
        assert not defaults.cache_file_for("app").exists()
        fake_toolchain.reset()
        rerun(unit, defaults)

        assert fake_toolchain.compiled_sources() == ["a.cc"]

    def test_clean_removes_artifacts(self, tmp_path, defaults, fake_toolchain):
        """Test clean deletes objects, target, and cache file."""
        unit = make_unit(tmp_path, {"a.cc": "int a;\n"})
        unit.compile(defaults)

        removed = unit.clean(defaults)

        assert set(removed) == {defaults.object_destination / "a.o", tmp_path / "bin" / "app"}
        assert not defaults.cache_file_for("app").exists()
        assert not unit.built
