"""Tests for the explorer actions and state reducers."""

import asyncio

import pytest

from antipodes.models.dto import Coordinate
from antipodes.services import explorer_state as reducers
from antipodes.services.explorer import AntipodeExplorer, ExplorerRegistry, UnknownLevelError
from antipodes.services.explorer_state import ExplorerState, InputMode, ViewMode
from antipodes.services.hierarchy import HierarchyResolver, ResolutionStatus
from antipodes.services.rate_limiter import RateLimiter

from conftest import FakeGeocoder, make_result, square_geojson


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class GatedGeocoder(FakeGeocoder):
    """FakeGeocoder whose reverse and lookup answers can be held back per key."""

    def __init__(self, reverse_by_point=None, **kwargs):
        super().__init__(**kwargs)
        self.reverse_by_point = reverse_by_point or {}
        self.gates = {}

    def hold(self, key):
        self.gates[key] = asyncio.Event()
        return self.gates[key]

    async def reverse_geocode(self, lat, lng):
        self.calls.append(("reverse", (lat, lng)))
        gate = self.gates.get((lat, lng))
        if gate is not None:
            await gate.wait()
        return self.reverse_by_point.get((lat, lng))

    async def lookup_objects(self, id_keys):
        gate = self.gates.get(tuple(id_keys))
        if gate is not None:
            await gate.wait()
        return await super().lookup_objects(id_keys)


def unthrottled(geocoder, clock=None):
    resolver = HierarchyResolver(geocoder, rate_limiter=RateLimiter(0))
    return AntipodeExplorer(geocoder, resolver=resolver, clock=clock or FakeClock())


@pytest.fixture
def beijing_geocoder():
    clicked = make_result(
        osm_type="relation",
        osm_id=912940,
        display_name="Dongcheng District, Beijing, China",
        address={"city": "Beijing", "country": "China"},
    )
    china = make_result(
        osm_type="relation",
        osm_id=270056,
        display_name="China",
        category="boundary",
        place_type="administrative",
        geojson=square_geojson(73.5, 18.0, 20.0),
        boundingbox=["18.0", "53.5", "73.5", "134.8"],
    )
    return FakeGeocoder(reverse=clicked, search={"China": [china]}, lookup={"R270056": china})


class TestClick:
    """Tests for AntipodeExplorer.click()."""

    @pytest.mark.asyncio
    async def test_beijing_click_then_dig(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())

        state = await explorer.click(39.9042, 116.4074)

        assert state.status == ResolutionStatus.READY
        assert state.message is None
        assert [level.id_key for level in state.hierarchy.levels] == ["R912940", "R270056"]
        assert state.hierarchy.token == state.token
        assert state.source_boundary is None

        dug = explorer.dig()

        assert dug.view == ViewMode.ANTI
        assert dug.anti_center.lat == pytest.approx(-39.9042)
        assert dug.anti_center.lng == pytest.approx(-63.5926)
        assert dug.anti_boundary is None
        assert dug.dig_distance_km == pytest.approx(20015.1, abs=0.1)

        assert explorer.back_to_source().view == ViewMode.SOURCE

    @pytest.mark.asyncio
    async def test_earlier_state_is_not_mutated(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())
        before = explorer.state

        await explorer.click(39.9042, 116.4074)

        assert before.token == 0
        assert before.hierarchy.levels == ()
        assert explorer.state is not before

    @pytest.mark.asyncio
    async def test_open_water(self):
        explorer = AntipodeExplorer(FakeGeocoder(), clock=FakeClock())

        state = await explorer.click(0.0, -30.0)

        assert state.status == ResolutionStatus.EMPTY
        assert state.message == reducers.NO_RESULT_AT_POINT
        assert state.hierarchy.levels == ()

    @pytest.mark.asyncio
    async def test_feature_without_identity_keeps_its_outline(self):
        anonymous = make_result(osm_type=None, osm_id=None, geojson=square_geojson(10.0, 10.0))
        explorer = AntipodeExplorer(FakeGeocoder(reverse=anonymous), clock=FakeClock())

        state = await explorer.click(10.5, 10.5)

        assert state.status == ResolutionStatus.EMPTY
        assert state.message == reducers.NO_LEVELS_WITH_OUTLINE
        assert state.source_boundary is not None

    @pytest.mark.asyncio
    async def test_feature_without_identity_or_outline(self):
        anonymous = make_result(osm_type=None, osm_id=None)
        explorer = AntipodeExplorer(FakeGeocoder(reverse=anonymous), clock=FakeClock())

        state = await explorer.click(10.5, 10.5)

        assert state.message == reducers.NO_REGION_DATA

    @pytest.mark.asyncio
    async def test_rapid_clicks_are_throttled(self, beijing_geocoder):
        clock = FakeClock(100.0)
        explorer = AntipodeExplorer(beijing_geocoder, clock=clock)

        await explorer.click(39.9, 116.4)
        clock.now = 100.2
        await explorer.click(39.8, 116.3)

        assert beijing_geocoder.count("reverse") == 1

        clock.now = 100.6
        await explorer.click(39.8, 116.3)

        assert beijing_geocoder.count("reverse") == 2
        assert explorer.state.source_center == Coordinate(lat=39.8, lng=116.3)

    @pytest.mark.asyncio
    async def test_stale_click_response_is_discarded(self):
        first = make_result(osm_type="node", osm_id=1, display_name="First place")
        second = make_result(osm_type="node", osm_id=2, display_name="Second place")
        geocoder = GatedGeocoder(reverse_by_point={(1.0, 1.0): first, (2.0, 2.0): second})
        gate = geocoder.hold((1.0, 1.0))
        explorer = unthrottled(geocoder)

        slow = asyncio.create_task(explorer.click(1.0, 1.0))
        await asyncio.sleep(0)
        await explorer.click(2.0, 2.0)
        gate.set()
        await slow

        state = explorer.state
        assert [level.id_key for level in state.hierarchy.levels] == ["N2"]
        assert state.source_center == Coordinate(lat=2.0, lng=2.0)
        assert state.token == 2


class TestSearch:
    """Tests for AntipodeExplorer.search()."""

    @pytest.mark.asyncio
    async def test_prefers_candidate_with_outline(self):
        point = make_result(osm_type="node", osm_id=5, display_name="Paris, Texas", address={})
        france_paris = make_result(
            osm_type="relation",
            osm_id=7444,
            display_name="Paris, Ile-de-France, France",
            geojson=square_geojson(2.22, 48.81, 0.25),
            boundingbox=["48.81", "49.06", "2.22", "2.47"],
        )
        geocoder = FakeGeocoder(search={"Paris": [point, france_paris]})
        explorer = AntipodeExplorer(geocoder, clock=FakeClock())

        state = await explorer.search("Paris")

        assert state.hierarchy.levels[0].id_key == "R7444"
        assert state.source_boundary is not None
        assert state.source_center.lat == pytest.approx(48.935)
        assert state.source_center.lng == pytest.approx(2.345)

    @pytest.mark.asyncio
    async def test_no_match(self):
        explorer = AntipodeExplorer(FakeGeocoder(), clock=FakeClock())

        state = await explorer.search("Xyzzy")

        assert state.status == ResolutionStatus.EMPTY
        assert state.message == 'No place called "Xyzzy" was found.'

    @pytest.mark.asyncio
    async def test_falls_back_to_point_location(self):
        point = make_result(osm_type="node", osm_id=5, display_name="Lonely Rock")
        point = point.model_copy(update={"lat": -20.5, "lon": 57.5})
        explorer = AntipodeExplorer(FakeGeocoder(search={"Lonely Rock": [point]}), clock=FakeClock())

        state = await explorer.search("Lonely Rock")

        assert state.source_center == Coordinate(lat=-20.5, lng=57.5)
        assert state.source_boundary is None


class TestSelectLevel:
    """Tests for AntipodeExplorer.select_level()."""

    @pytest.mark.asyncio
    async def test_loads_once_and_activates(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())
        await explorer.click(39.9042, 116.4074)

        state = await explorer.select_level("R270056")

        assert state.active_level == "R270056"
        assert state.loading_level is None
        assert state.hierarchy.find("R270056").loaded
        assert not state.hierarchy.find("R912940").loaded
        assert state.source_boundary is not None
        assert state.source_center.lat == pytest.approx(35.75)

        await explorer.select_level("R270056")

        assert beijing_geocoder.count("lookup") == 1

    @pytest.mark.asyncio
    async def test_failed_load_reports_and_stays_retryable(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())
        await explorer.click(39.9042, 116.4074)

        state = await explorer.select_level("R912940")

        assert "Dongcheng District" in state.message
        assert state.active_level is None
        assert not state.hierarchy.find("R912940").loaded

    @pytest.mark.asyncio
    async def test_unknown_level(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())

        with pytest.raises(UnknownLevelError):
            await explorer.select_level("R1")

    @pytest.mark.asyncio
    async def test_boundary_for_replaced_hierarchy_is_discarded(self):
        first = make_result(osm_type="relation", osm_id=1, display_name="First")
        second = make_result(osm_type="relation", osm_id=2, display_name="Second")
        outline = make_result(osm_type="relation", osm_id=1, display_name="First",
                              geojson=square_geojson(0.0, 0.0))
        geocoder = GatedGeocoder(
            reverse_by_point={(1.0, 1.0): first, (2.0, 2.0): second},
            lookup={"R1": outline},
        )
        explorer = unthrottled(geocoder)
        await explorer.click(1.0, 1.0)
        gate = geocoder.hold(("R1",))

        loading = asyncio.create_task(explorer.select_level("R1"))
        await asyncio.sleep(0)
        await explorer.click(2.0, 2.0)
        gate.set()
        await loading

        state = explorer.state
        assert [level.id_key for level in state.hierarchy.levels] == ["R2"]
        assert state.active_level is None
        assert state.source_boundary is None


class TestRectangleSelection:
    """Tests for the drawn-rectangle flow and its click cooldown."""

    @pytest.mark.asyncio
    async def test_clicks_ignored_while_drawing(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())

        assert explorer.begin_selection().input_mode == InputMode.DRAWING
        await explorer.click(39.9, 116.4)

        assert beijing_geocoder.count("reverse") == 0

    @pytest.mark.asyncio
    async def test_finish_sets_region_and_cools_down(self, beijing_geocoder):
        clock = FakeClock(50.0)
        explorer = AntipodeExplorer(beijing_geocoder, clock=clock)
        explorer.begin_selection()

        # Corners as dragged from north-east to south-west
        state = explorer.finish_selection(Coordinate(lat=12, lng=25), Coordinate(lat=10, lng=20))

        assert state.input_mode == InputMode.COOLDOWN
        assert state.token == 1
        assert state.source_center == Coordinate(lat=11, lng=22.5)
        assert state.source_boundary.polygons[0][0] == [(12, 20), (12, 25), (10, 25), (10, 20), (12, 20)]

        clock.now = 50.1
        await explorer.click(11.0, 22.0)
        assert beijing_geocoder.count("reverse") == 0

        clock.now = 50.4
        await explorer.click(11.0, 22.0)
        assert beijing_geocoder.count("reverse") == 1
        assert explorer.state.input_mode == InputMode.IDLE

    def test_cancel_returns_to_idle(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())
        explorer.begin_selection()

        assert explorer.cancel_selection().input_mode == InputMode.IDLE

    def test_dig_rectangle(self, beijing_geocoder):
        explorer = AntipodeExplorer(beijing_geocoder, clock=FakeClock())
        explorer.finish_selection(Coordinate(lat=10, lng=20), Coordinate(lat=12, lng=25))

        state = explorer.dig()

        assert state.anti_center == Coordinate(lat=-11, lng=-157.5)
        assert state.anti_boundary.polygons[0][0][0] == (-12, -160)
        assert len(state.anti_boundary.polygons[0][0]) == 5


class TestReducers:
    """Token guards on the pure reducers."""

    def test_resolution_for_old_token_is_ignored(self):
        state = reducers.begin_query(reducers.begin_query(ExplorerState()))
        resolution = reducers.HierarchyResolution(status=ResolutionStatus.EMPTY)

        assert reducers.apply_resolution(state, 1, resolution, None) is state

    def test_no_result_for_old_token_is_ignored(self):
        state = reducers.begin_query(reducers.begin_query(ExplorerState()))

        assert reducers.apply_no_result(state, 1, "gone") is state

    def test_begin_query_resets_hierarchy(self):
        state = reducers.begin_query(ExplorerState(), Coordinate(lat=1, lng=2))

        assert state.status == ResolutionStatus.RESOLVING
        assert state.hierarchy.token == state.token == 1
        assert state.source_center == Coordinate(lat=1, lng=2)


class TestExplorerRegistry:
    """Tests for ExplorerRegistry."""

    def test_same_session_same_explorer(self):
        registry = ExplorerRegistry(FakeGeocoder())

        assert registry.get("a") is registry.get("a")
        assert len(registry) == 1

    def test_least_recently_used_is_evicted(self):
        registry = ExplorerRegistry(FakeGeocoder(), max_sessions=2)
        a = registry.get("a")
        registry.get("b")
        registry.get("a")
        registry.get("c")

        assert len(registry) == 2
        assert registry.get("a") is a
        assert "b" not in registry._explorers
