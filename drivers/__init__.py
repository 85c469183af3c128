#Marks drivers as a package.
#Driver/vehicle models, the dispatch policy, pool selection, fleet pairing
#and the per-driver workflow. Import the submodules directly.
