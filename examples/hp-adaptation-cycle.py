import logging

import numpy as np

import modepy as mp


logger = logging.getLogger(__name__)

nadaptation_cycles = 4


def main():
    logging.basicConfig(level=logging.INFO)

    from hprefine.fe_collection import make_fe_collection
    fe_collection = make_fe_collection(mp.Hypercube(2), [1, 2, 3, 4, 5])

    from hprefine.generation import generate_refined_forest
    forest = generate_refined_forest(4, fe_collection, levels=1)

    from hprefine.forest import execute_coarsening_and_refinement
    from hprefine.refinement import (
        choose_p_over_h,
        count_adaptation_intents,
        p_adaptivity_from_threshold,
    )

    rng = np.random.default_rng(seed=15)

    for icycle in range(nadaptation_cycles):
        # stand-ins for an error estimator and a smoothness estimator
        errors = rng.uniform(size=forest.nactive_cells)
        smoothness = rng.uniform(size=forest.nactive_cells)

        refine_threshold, coarsen_threshold = np.quantile(errors, [0.7, 0.2])
        forest.set_refine_flags_from_array(errors > refine_threshold)
        forest.set_coarsen_flags_from_array(errors < coarsen_threshold)

        p_adaptivity_from_threshold(forest, smoothness)
        choose_p_over_h(forest)

        for intent, count in count_adaptation_intents(forest).items():
            logger.info("cycle %d: %s: %d cells", icycle, intent.name, count)

        execute_coarsening_and_refinement(forest)

        degrees = fe_collection.degrees[forest.get_active_fe_indices()]
        logger.info("cycle %d: %d active cells, degree histogram %s",
                icycle, forest.nactive_cells,
                np.bincount(degrees, minlength=fe_collection.max_degree + 1))


if __name__ == "__main__":
    main()
