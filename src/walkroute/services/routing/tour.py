"""Stop ordering heuristics: nearest-neighbor construction plus 2-opt local search.

Tours are open paths anchored at index 0: the walker starts at the first
stop and does not return to it, so no return leg is ever counted.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from ..geospatial import distance_m
from .models import Coordinate

logger = logging.getLogger(__name__)

# A reversal may lengthen the tour by up to this factor when fewer turns are preferred.
FEWER_TURNS_TOLERANCE = 1.05


def build_distance_matrix(coordinates: Sequence[Coordinate]) -> list[list[float]]:
    """Pairwise straight-line distances in metres; the diagonal is infinite."""

    n = len(coordinates)
    matrix = [[math.inf] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            d = distance_m(coordinates[i], coordinates[j])
            matrix[i][j] = d
            matrix[j][i] = d
    return matrix


def tour_length(tour: Sequence[int], matrix: Sequence[Sequence[float]]) -> float:
    return sum(matrix[tour[k]][tour[k + 1]] for k in range(len(tour) - 1))


def nearest_neighbor_tour(matrix: Sequence[Sequence[float]]) -> list[int]:
    n = len(matrix)
    tour = [0]
    unvisited = list(range(1, n))
    current = 0
    while unvisited:
        best_next = unvisited[0]
        best_distance = matrix[current][best_next]
        for candidate in unvisited[1:]:
            if matrix[current][candidate] < best_distance:
                best_distance = matrix[current][candidate]
                best_next = candidate
        tour.append(best_next)
        unvisited.remove(best_next)
        current = best_next
    return tour


def two_opt_swap(tour: Sequence[int], i: int, j: int) -> list[int]:
    """Reverse the positions ``i + 1`` through ``j`` (inclusive)."""

    return [*tour[: i + 1], *reversed(tour[i + 1 : j + 1]), *tour[j + 1 :]]


def optimize_tour(
    matrix: Sequence[Sequence[float]],
    *,
    prioritize_fewer_turns: bool = False,
    max_iterations: int = 100,
) -> list[int]:
    """Order the stops of ``matrix`` starting from index 0.

    Runs nearest-neighbor, then first-improvement 2-opt: each scan applies
    the first reversal that beats the current best length and restarts.
    Stops when a scan finds nothing or after ``max_iterations`` scans.
    """

    n = len(matrix)
    if n < 2:
        raise ValueError(f"At least two stops are required to build a tour, got {n}.")

    tour = nearest_neighbor_tour(matrix)
    best_length = tour_length(tour, matrix)
    initial_length = best_length

    iterations = 0
    improved = True
    while improved and iterations < max_iterations:
        improved = False
        iterations += 1
        for i in range(n - 2):
            for j in range(i + 2, n):
                candidate = two_opt_swap(tour, i, j)
                candidate_length = tour_length(candidate, matrix)
                if prioritize_fewer_turns:
                    accept = candidate_length < best_length * FEWER_TURNS_TOLERANCE
                else:
                    accept = candidate_length < best_length
                if accept:
                    tour = candidate
                    best_length = candidate_length
                    improved = True
                    break
            if improved:
                break

    logger.debug(
        f"2-opt finished after {iterations} scans: {initial_length:.1f}m -> {best_length:.1f}m"
    )
    return tour
