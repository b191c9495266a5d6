"""Tests for PMC forecasting and training scenarios."""

from datetime import date, timedelta

import pytest

from models.performance.fitness_fatigue import DailyLoad, FitnessFatigueModel
from models.performance.forecaster import Forecaster, initial_state, weekly_pattern

TODAY = date(2024, 4, 10)


@pytest.fixture
def current():
    return DailyLoad(date=TODAY, tss=0.0, atl=50.0, ctl=40.0, tsb=-5.0)


class TestForecast:
    def test_first_days(self, current):
        forecast = Forecaster().forecast(current, [0, 100])

        assert [load.date for load in forecast] == [TODAY + timedelta(days=1), TODAY + timedelta(days=2)]
        assert forecast[0].atl == pytest.approx(37.5)
        assert forecast[0].ctl == pytest.approx(40 * 41 / 43)
        # TSB lags ATL by one day, starting from the current ATL
        assert forecast[0].tsb == pytest.approx(forecast[0].ctl - 50.0)
        assert forecast[1].tsb == pytest.approx(forecast[1].ctl - 37.5)

    def test_continues_the_modeled_series(self):
        stress = [60, 0, 90, 30, 0, 120, 45, 0, 75, 20]
        model = FitnessFatigueModel()
        days = [(TODAY + timedelta(days=i), float(tss)) for i, tss in enumerate(stress)]

        full = model.run(days)
        head = model.run(days[:4])
        tail = Forecaster(model).forecast(head[-1], stress[4:])

        for expected, projected in zip(full[4:], tail):
            assert projected.date == expected.date
            assert projected.atl == pytest.approx(expected.atl)
            assert projected.ctl == pytest.approx(expected.ctl)
            assert projected.tsb == pytest.approx(expected.tsb)

    def test_missing_days_count_as_rest(self, current):
        with_none = Forecaster().forecast(current, [None, 80])
        with_zero = Forecaster().forecast(current, [0, 80])

        assert [load.to_dict() for load in with_none] == [load.to_dict() for load in with_zero]

    def test_explicit_start_date(self, current):
        forecast = Forecaster().forecast(current, [10], start_date=date(2024, 5, 1))
        assert forecast[0].date == date(2024, 5, 1)


class TestScenarios:
    def test_standard_scenarios(self, current):
        scenarios = Forecaster().training_scenarios(current, days=14)

        assert set(scenarios) == {"rest", "maintenance", "moderate", "intense"}
        assert all(len(loads) == 14 for loads in scenarios.values())
        assert [load.tss for load in scenarios["maintenance"]] == [50.0] * 14
        assert scenarios["moderate"][6].tss == 0.0
        assert scenarios["intense"][13].tss == 0.0
        assert scenarios["intense"][0].tss == 120.0

    def test_rest_sheds_fatigue(self, current):
        rest = Forecaster().training_scenarios(current, days=14)["rest"]

        atl = [load.atl for load in rest]
        assert all(later < earlier for earlier, later in zip(atl, atl[1:]))
        assert rest[-1].tsb > current.tsb

    def test_weekly_pattern(self):
        assert weekly_pattern(80, 8) == [80, 80, 80, 80, 80, 80, 0, 80]


class TestInitialState:
    def test_latest_modeled_day(self, current):
        older = DailyLoad(date=TODAY - timedelta(days=1), tss=0.0, atl=1.0, ctl=1.0, tsb=0.0)
        assert initial_state([older, current]) is current

    def test_untrained_without_history(self):
        state = initial_state([], today=TODAY)
        assert state == DailyLoad(date=TODAY, tss=0.0, atl=0.0, ctl=0.0, tsb=0.0)
