from typing import Dict, Iterable, List, Mapping, Optional, Sequence


def final_standings(player_ids: Iterable[str], line_counts: Mapping[str, int],
                    turn_order: Sequence[str] = (), finish_order: Sequence[str] = ()) -> List[str]:
    """Rank players for the results screen.

    Players in the server's finish order come first, in that order. Everyone
    else follows by line count, highest first, tie-broken by turn order.
    """
    ids = list(dict.fromkeys(player_ids))
    finished = [pid for pid in dict.fromkeys(finish_order) if pid]
    finished_set = set(finished)
    order_index = {pid: idx for idx, pid in enumerate(turn_order)}

    remaining = [pid for pid in ids if pid not in finished_set]
    remaining.sort(key=lambda pid: (-int(line_counts.get(pid, 0) or 0), order_index.get(pid, len(order_index))))
    return finished + remaining


def ranks_by_player(standings: Sequence[str]) -> Dict[str, int]:
    return {pid: idx + 1 for idx, pid in enumerate(standings)}


def result_summary(winner_id: Optional[str], standings: Sequence[str], line_counts: Mapping[str, int],
                   final_scores: Optional[Mapping[str, int]] = None) -> Dict:
    """Summary of a finished game in the shape published to the UI."""
    final_scores = final_scores or {}
    ranks = ranks_by_player(standings)
    return {
        'winner_id': winner_id or (standings[0] if standings else None),
        'standings': [
            {
                'player_id': pid,
                'rank': ranks[pid],
                'lines': int(line_counts.get(pid, 0) or 0),
                'score': final_scores.get(pid),
            }
            for pid in standings
        ],
    }
