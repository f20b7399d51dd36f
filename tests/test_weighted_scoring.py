from decimal import Decimal

from queen_league.config import Config
from queen_league.data_models.scoring import RosterEntry, ScoringConfig
from queen_league.utils.scoring_exceptions import ConfigError
from queen_league.utils.weighted_scoring import MultiplierResolver, WeightedScoreCalculator


def entry(user_id=1, league_id=1, queen="Bianca", rank=1, episode=2):
    return RosterEntry(user_id=user_id, league_id=league_id, episode_number=episode, queen_name=queen, rank=rank)


def test_resolver_fills_defaults_for_missing_keys():
    config, issues = MultiplierResolver.resolve({})
    assert config.multipliers == {1: 2.0, 2: 1.5, 3: 1.0, 4: 0.5}
    assert issues == []


def test_resolver_uses_configured_values_and_ignores_unrelated_keys():
    config, issues = MultiplierResolver.resolve({
        'multiplier_rank_1': '2.5',
        'multiplier_rank_3': ' 1.25 ',
        'current_episode': '4',
    })
    assert config.multipliers[1] == 2.5
    assert config.multipliers[2] == 1.5
    assert config.multipliers[3] == 1.25
    assert config.multipliers[4] == 0.5
    assert issues == []


def test_resolver_replaces_unusable_values_with_defaults():
    config, issues = MultiplierResolver.resolve({
        'multiplier_rank_1': 'abc',
        'multiplier_rank_2': '-1',
        'multiplier_rank_3': '0',
        'multiplier_rank_4': 'NaN',
    })
    assert config.multipliers == Config.DEFAULT_RANK_MULTIPLIERS
    assert len(issues) == 4
    assert all(isinstance(issue, ConfigError) for issue in issues)
    assert issues[0].key == 'multiplier_rank_1'
    assert issues[0].default == 2.0


def test_resolver_treats_blank_value_as_missing():
    config, issues = MultiplierResolver.resolve({'multiplier_rank_2': '   '})
    assert config.multipliers[2] == 1.5
    assert issues == []


def test_override_resolves_like_settings():
    settings = MultiplierResolver.override_to_settings({1: 3, 2: 'bad'})
    config, issues = MultiplierResolver.resolve(settings)
    assert config.multipliers[1] == 3.0
    assert config.multipliers[2] == 1.5
    assert len(issues) == 1


def test_undefined_rank_uses_fallback_multiplier():
    config, _ = MultiplierResolver.resolve({})
    assert config.multiplier_for(5) == 1.0
    assert config.multiplier_for(0) == 1.0


def test_rank_one_multiplier_applied_to_raw_points():
    config = ScoringConfig(multipliers={1: 2.5})
    candidate = WeightedScoreCalculator.calculate_entry(entry(rank=1), {"Bianca": Decimal(7)}, config)
    assert candidate.calculated_points == Decimal("17.50")
    assert candidate.queen_name == "Bianca"
    assert candidate.rank == 1


def test_unmapped_rank_scores_raw_points():
    config = ScoringConfig(multipliers={1: 2.5})
    candidate = WeightedScoreCalculator.calculate_entry(entry(rank=5), {"Bianca": Decimal(7)}, config)
    assert candidate.calculated_points == Decimal("7.00")


def test_queen_without_box_scores_scores_zero():
    config, _ = MultiplierResolver.resolve({})
    candidate = WeightedScoreCalculator.calculate_entry(entry(queen="Jinkx"), {"Bianca": Decimal(7)}, config)
    assert candidate.calculated_points == Decimal("0.00")


def test_rounding_happens_once_at_multiplication():
    # 0.1 + 0.2 summed as floats is 0.30000000000000004
    raw = {"Bianca": Decimal(str(0.1 + 0.2))}
    config = ScoringConfig(multipliers={1: 1.5})
    candidate = WeightedScoreCalculator.calculate_entry(entry(), raw, config)
    assert candidate.calculated_points == Decimal("0.45")


def test_calculate_all_is_deterministic_and_ordered():
    config, _ = MultiplierResolver.resolve({})
    raw = {"Bianca": Decimal(7), "Jinkx": Decimal(4)}
    entries = [
        entry(user_id=2, league_id=2, queen="Jinkx", rank=2),
        entry(user_id=1, league_id=1, queen="Bianca", rank=1),
        entry(user_id=1, league_id=1, queen="Jinkx", rank=2),
    ]
    first = WeightedScoreCalculator.calculate_all(entries, raw, config)
    second = WeightedScoreCalculator.calculate_all(list(reversed(entries)), raw, config)
    assert first == second
    assert [(c.league_id, c.user_id, c.rank) for c in first] == [(1, 1, 1), (1, 1, 2), (2, 2, 2)]
    assert [c.calculated_points for c in first] == [Decimal("14.00"), Decimal("6.00"), Decimal("6.00")]


def test_resolver_rejects_multipliers_outside_float_range():
    config, issues = MultiplierResolver.resolve({
        'multiplier_rank_1': '1e27',
        'multiplier_rank_2': '1e-400',
        'multiplier_rank_3': '1e400',
    })
    assert config.multipliers == Config.DEFAULT_RANK_MULTIPLIERS
    assert [issue.key for issue in issues] == ['multiplier_rank_1', 'multiplier_rank_2', 'multiplier_rank_3']
    assert MultiplierResolver.parse_multiplier(str(Config.MAX_RANK_MULTIPLIER)) == Config.MAX_RANK_MULTIPLIER


def test_override_for_rank_outside_roster_is_reported():
    config, issues = MultiplierResolver.resolve(MultiplierResolver.override_to_settings({1: 2.5, 5: 3.0}))
    assert config.multipliers == {1: 2.5, 2: 1.5, 3: 1.0, 4: 0.5}
    assert len(issues) == 1
    assert issues[0].key == 'multiplier_rank_5'
    assert issues[0].default == Config.FALLBACK_MULTIPLIER
